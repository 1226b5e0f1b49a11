"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    assignment_id: str | None = None,
    lead_id: str | None = None,
    consultant_id: str | None = None,
    job: str | None = None,
    worker: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if assignment_id:
        context["assignment_id"] = str(assignment_id)
    if lead_id:
        context["lead_id"] = str(lead_id)
    if consultant_id:
        context["consultant_id"] = str(consultant_id)
    if job:
        context["job"] = job
    if worker:
        context["worker"] = worker
    return context


def mask_email(email: str | None) -> str:
    """Mask an email address for logs."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."
