"""
Database base configuration, model base class and session factory.

Uses SQLAlchemy 2.0 declarative base.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, MetaData, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker, Session
from sqlalchemy.sql import func

from marketplace_sync.core.config import settings

# Naming convention for constraints (helps with Alembic migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


def new_id() -> str:
    """Primary key generator (UUID4 as text, portable across SQLite and PostgreSQL)."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    metadata = metadata

    # Type annotation for mypy
    __tablename__: str


class IdMixin:
    """UUID text primary key."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Record creation timestamp",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Record last update timestamp",
    )


def create_db_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create an engine with pool options from settings.

    SQLite gets the default pool; pool sizing only applies to server databases.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo)

    return create_engine(
        url,
        echo=echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables (development / first run; use migrations in production)."""
    # Register models on the metadata
    from marketplace_sync.db import models  # noqa: F401

    Base.metadata.create_all(engine)
