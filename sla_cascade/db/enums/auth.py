"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    User roles.

    - CONSULTANT: receives leads from the cascade
    - MANAGER: receives escalations and the daily report
    - ADMIN: edits the automation config
    """

    CONSULTANT = "consultant"
    MANAGER = "manager"
    ADMIN = "admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_
