import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Uuid
from sqlalchemy.orm import DeclarativeBase

from sla_cascade.db.types import JSONType, UTCDateTime


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: UTCDateTime(),
        uuid.UUID: Uuid(),
        dict[str, Any]: JSONType,
        list[str]: JSONType,
    }
