"""Portable SQL types that work across PostgreSQL and SQLite.

PostgreSQL stores enum sets as ``ARRAY(Text)``; other dialects fall back to
a JSON list. Values are always returned as a Python ``set`` of enum members.
"""

import enum

import sqlalchemy as sa
from sqlalchemy import JSON, TypeDecorator


class EnumSet(TypeDecorator):
    """A set of ``enum.Enum`` members persisted by member name."""

    impl = JSON
    cache_ok = True

    def __init__(self, enum_class: type[enum.Enum], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import ARRAY

            return dialect.type_descriptor(ARRAY(sa.Text()))
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return sorted(self.enum_class(v).name for v in value)

    def process_result_value(self, value, dialect):
        if value is None:
            return set()
        return {self.enum_class[v] for v in value}

    def copy(self, **kw):
        return EnumSet(self.enum_class)
