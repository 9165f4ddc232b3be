"""Data store access."""

from .db import Database, QueryError, bind_day, connect, create_schema, is_postgres

__all__ = [
    "Database",
    "QueryError",
    "bind_day",
    "connect",
    "create_schema",
    "is_postgres",
]
