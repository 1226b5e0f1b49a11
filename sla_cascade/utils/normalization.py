"""Identifier normalization used for recurring-lead matching."""

import re
from typing import Optional

from sla_cascade.core.constants import DEFAULT_PHONE_COUNTRY_CODE


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Returns:
        Lowercased, trimmed email or None if empty
    """
    if not email:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Brazilian phone to national digits (DDD + number).

    Accepts:
    - +55 (11) 98765-4321 → 11987654321
    - 5511987654321 → 11987654321
    - (11) 8765-4321 → 1187654321

    Returns None when no digits remain.
    """
    if not phone:
        return None
    digits = _digits(phone)
    if not digits:
        return None
    if digits.startswith(DEFAULT_PHONE_COUNTRY_CODE) and len(digits) in (12, 13):
        digits = digits[len(DEFAULT_PHONE_COUNTRY_CODE):]
    # Trunk prefix 0 before DDD
    if digits.startswith("0") and len(digits) in (11, 12):
        digits = digits[1:]
    return digits


def phone_match_variants(normalized: Optional[str]) -> list[str]:
    """
    Return the normalized phone plus its ninth-digit twin.

    Mobile numbers gained a leading 9 after the DDD; a client stored before
    the change must still match (11 8765-4321 ≡ 11 98765-4321).
    """
    if not normalized:
        return []
    variants = [normalized]
    if len(normalized) == 11 and normalized[2] == "9":
        variants.append(normalized[:2] + normalized[3:])
    elif len(normalized) == 10 and normalized[2] in "6789":
        variants.append(normalized[:2] + "9" + normalized[2:])
    return variants


def normalize_document(document: Optional[str]) -> Optional[str]:
    """Normalize a tax document (CPF/CNPJ) to digits only."""
    if not document:
        return None
    digits = _digits(document)
    return digits or None
