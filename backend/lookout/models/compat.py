"""Column types that work with both PostgreSQL and SQLite.

PostgreSQL gets native ARRAY/JSONB columns; SQLite (used for local
development) falls back to JSON.
"""

import enum

from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Dialect

# JSONB on PostgreSQL, JSON elsewhere
JSONBType = JSON().with_variant(postgresql.JSONB(), "postgresql")


class ArrayType(TypeDecorator):
    """String array stored as ARRAY on PostgreSQL and as a JSON list elsewhere.

    NULL is read back as an empty list so callers never branch on None.
    """

    impl = JSON
    cache_ok = True

    def __init__(self, item_type=String):
        super().__init__()
        self.item_type = item_type

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.ARRAY(self.item_type))
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return list(value)

    def process_result_value(self, value, dialect):
        return list(value) if value else []


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum members by value rather than by name."""
    return [member.value for member in enum_cls]
