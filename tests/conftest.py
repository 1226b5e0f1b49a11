"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test
- User / client / config factories
- Recording notification transport
"""
import os
import uuid
from typing import Generator

# Must be set before the engine in sla_cascade.db.session is built
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

import pytest
from sqlalchemy.orm import Session, sessionmaker

from sla_cascade.db.base import Base
from sla_cascade.db.enums import Role
from sla_cascade.db.models import AutomationConfig, Client, User
from sla_cascade.db.session import build_engine
from sla_cascade.schemas.automation import AutomationConfigCreate
from sla_cascade.services import automation_config_service
from sla_cascade.services.notification_dispatcher import NotificationDeliveryError, NotificationDispatcher


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture(scope="function")
def make_user(db: Session):
    def _make(role: Role = Role.CONSULTANT, **kwargs) -> User:
        suffix = uuid.uuid4().hex[:8]
        kwargs.setdefault("email", f"{role.value}-{suffix}@test.com")
        kwargs.setdefault("display_name", f"{role.value.title()} {suffix}")
        user = User(role=role.value, **kwargs)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture(scope="function")
def consultant(make_user) -> User:
    return make_user()


@pytest.fixture(scope="function")
def manager(make_user) -> User:
    return make_user(Role.MANAGER)


@pytest.fixture(scope="function")
def make_client(db: Session):
    def _make(**kwargs) -> Client:
        kwargs.setdefault("full_name", "Maria Silva")
        client = Client(**kwargs)
        db.add(client)
        db.commit()
        return client

    return _make


@pytest.fixture(scope="function")
def make_config(db: Session):
    def _make(**overrides) -> AutomationConfig:
        overrides.setdefault("timezone", "UTC")
        overrides.setdefault("holiday_country", "")
        return automation_config_service.create_config(db, AutomationConfigCreate(**overrides))

    return _make


# =============================================================================
# Notification Fixtures
# =============================================================================

class RecordingTransport:
    """Collects sends; raises for recipients listed in `failing_user_ids`."""

    def __init__(self):
        self.sent: list[tuple[str, uuid.UUID, dict]] = []
        self.failing_user_ids: set[uuid.UUID] = set()

    def send(self, channel, recipient, payload):
        if recipient.id in self.failing_user_ids:
            raise NotificationDeliveryError("gateway down")
        self.sent.append((channel, recipient.id, payload))

    def sent_to(self, user_id, type_=None):
        return [
            item
            for item in self.sent
            if item[1] == user_id and (type_ is None or item[2].get("type") == type_)
        ]


@pytest.fixture(scope="function")
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture(scope="function")
def dispatcher(transport: RecordingTransport) -> NotificationDispatcher:
    return NotificationDispatcher(transport, claim_ttl_seconds=300)
