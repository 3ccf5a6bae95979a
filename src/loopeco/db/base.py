"""Declarative base and portable column types."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and local dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def dialect_insert(db: AsyncSession, model: type[Base]):  # type: ignore[no-untyped-def]
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    if db.get_bind().dialect.name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert(model)

    from sqlalchemy.dialects.postgresql import insert as pg_insert

    return pg_insert(model)
