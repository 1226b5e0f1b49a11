from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sla_cascade.core.config import settings


def build_engine(database_url: str):
    """Create an engine for PostgreSQL (production) or SQLite (tests/local)."""
    url = make_url(database_url)
    backend = url.get_backend_name()
    if backend.startswith("postgresql"):
        return create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            connect_args={"options": "-c timezone=utc"},
        )
    if backend == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if not url.database or url.database == ":memory:":
            # One shared connection so every session sees the same in-memory DB
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
