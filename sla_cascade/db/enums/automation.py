"""Automation configuration enums."""

from enum import Enum


class DistributionMethod(str, Enum):
    """How the next consultant is chosen for a lead."""

    VOLUME = "volume"
    SPECIALTY = "specialty"
    AVAILABILITY = "availability"
    REGION = "region"
    ROUND_ROBIN = "round_robin"


class IdentityField(str, Enum):
    """Client identifiers usable for recurring-lead detection."""

    EMAIL = "email"
    PHONE = "phone"
    DOCUMENT = "document"
