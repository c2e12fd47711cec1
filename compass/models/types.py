"""Dialect-agnostic types for SQLite (tests) and PostgreSQL (production).

PostgreSQL-specific JSONB is not supported by SQLite. JSONBCompat uses JSONB
on PostgreSQL and JSON on SQLite for cross-database compatibility.
"""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class JSONBCompat(TypeDecorator):
    """Dict/list: JSONB on PostgreSQL, JSON on SQLite."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())
