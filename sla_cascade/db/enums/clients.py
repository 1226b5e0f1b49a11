"""Client (lead) enums."""

from enum import Enum


class ClientStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    SCHEDULED = "scheduled"
    WON = "won"
    LOST = "lost"
    ARCHIVED = "archived"


TERMINAL_CLIENT_STATUSES = (
    ClientStatus.WON.value,
    ClientStatus.LOST.value,
    ClientStatus.ARCHIVED.value,
)
