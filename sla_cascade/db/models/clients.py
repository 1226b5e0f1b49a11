"""Client (lead) model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Index, String, event, func, inspect
from sqlalchemy.orm import Mapped, mapped_column

from sla_cascade.db.base import Base
from sla_cascade.db.enums import ClientStatus
from sla_cascade.utils.normalization import (
    normalize_document,
    normalize_email,
    normalize_phone,
)


class Client(Base):
    """
    A lead/client record owned by the CRM.

    Normalized identifier columns are maintained on every ORM write and are
    what recurring-lead detection queries against.
    """

    __tablename__ = "clients"
    __table_args__ = (
        Index("idx_clients_email_normalized", "email_normalized"),
        Index("idx_clients_phone_normalized", "phone_normalized"),
        Index("idx_clients_document_normalized", "document_normalized"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    document: Mapped[str | None] = mapped_column(String(50), nullable=True)

    email_normalized: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_normalized: Mapped[str | None] = mapped_column(String(20), nullable=True)
    document_normalized: Mapped[str | None] = mapped_column(String(20), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=ClientStatus.NEW.value, server_default=ClientStatus.NEW.value, nullable=False
    )
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    specialty: Mapped[str | None] = mapped_column(String(100), nullable=True)

    assigned_to_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Recency reference for terminal clients; reassignments do not move it
    status_changed_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


@event.listens_for(Client, "before_insert")
@event.listens_for(Client, "before_update")
def _normalize_identifiers(mapper, connection, target: Client) -> None:
    target.email_normalized = normalize_email(target.email)
    target.phone_normalized = normalize_phone(target.phone)
    target.document_normalized = normalize_document(target.document)


@event.listens_for(Client, "before_update")
def _track_status_change(mapper, connection, target: Client) -> None:
    state = inspect(target)
    if state.attrs.status.history.has_changes() and not state.attrs.status_changed_at.history.has_changes():
        target.status_changed_at = datetime.now(timezone.utc)
