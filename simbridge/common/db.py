"""Database bootstrap helpers shared by every store."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from simbridge.common.config import Settings


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONPayload = JSON().with_variant(postgresql.JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_engine(settings: Settings) -> Engine:
    """Create the process-wide engine with a bounded connection pool."""

    url = settings.database_url
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            # One shared connection, otherwise every checkout sees an empty database.
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_recycle=settings.db_pool_recycle_seconds,
        connect_args={"connect_timeout": int(settings.db_pool_timeout_seconds)},
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after the store closes its session.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def insert_for(db, model):
    """Return a dialect-specific INSERT that supports ON CONFLICT clauses."""

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"upsert not supported on dialect {dialect}")
