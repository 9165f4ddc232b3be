"""Data store access for completion queries.

PostgreSQL DSNs (``postgres://`` / ``postgresql://``) go through psycopg2,
everything else is treated as a DuckDB database path.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional

import duckdb
import psycopg2

from ..config.settings import get_settings

logger = logging.getLogger(__name__)

POSTGRES_SCHEMES = ("postgres://", "postgresql://")
DUCKDB_SCHEME = "duckdb://"

DRIVER_ERRORS = (duckdb.Error, psycopg2.Error)


class QueryError(RuntimeError):
    """Error raised when the data store cannot be reached or queried."""
    pass


def is_postgres(dsn: str) -> bool:
    return dsn.startswith(POSTGRES_SCHEMES)


DAY_PLACEHOLDER = "{day}"


def bind_day(sql: str, day: date) -> str:
    """Replace the {day} placeholder with a DATE literal for ``day``.

    The literal is built from a ``date`` only, and is valid in both
    PostgreSQL and DuckDB. Queries without the placeholder are returned as is.
    """
    return sql.replace(DAY_PLACEHOLDER, f"DATE '{day.isoformat()}'")


def connect(dsn: Optional[str] = None):
    """Create and return a DB-API connection for ``dsn``.

    Args:
        dsn: Connection string, defaults to the configured DSN

    Returns:
        psycopg2 connection (autocommit) or DuckDB connection

    Raises:
        QueryError: If the driver refuses the connection
    """
    dsn = dsn or get_settings().DSN
    try:
        if is_postgres(dsn):
            conn = psycopg2.connect(dsn)
            conn.autocommit = True
            return conn

        db_path = dsn[len(DUCKDB_SCHEME):] if dsn.startswith(DUCKDB_SCHEME) else dsn
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return duckdb.connect(db_path)
    except DRIVER_ERRORS as e:
        raise QueryError(f"cannot connect to data store: {e}") from e


def create_schema(conn) -> None:
    """Create the demo settlement tables used by the default queries.

    Args:
        conn: DuckDB or PostgreSQL connection
    """
    cur = conn.cursor()
    try:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS distributor (
                id BIGINT PRIMARY KEY,
                name VARCHAR NOT NULL,
                pay_status VARCHAR NOT NULL DEFAULT 'pending'
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS bill_payment (
                id BIGINT PRIMARY KEY,
                distributor_id BIGINT NOT NULL,
                pay_status VARCHAR NOT NULL DEFAULT 'pending',
                created_at TIMESTAMP NOT NULL
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS token_payment_detail (
                id BIGINT PRIMARY KEY,
                amount NUMERIC(18, 2) NOT NULL,
                payment_time TIMESTAMP NOT NULL
            )
        """)
    finally:
        cur.close()

    conn.commit()


class Database:
    """Lazily (re)connecting wrapper that answers scalar queries."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or get_settings().DSN
        self._conn = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Open the connection now instead of on first query."""
        if self._conn is None:
            self._conn = connect(self.dsn)
            logger.info("Connected to %s data store", "PostgreSQL" if is_postgres(self.dsn) else "DuckDB")

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except DRIVER_ERRORS as e:
            logger.debug("Ignoring error while closing connection: %s", e)
        finally:
            self._conn = None

    def scalar(self, sql: str, params: Optional[tuple] = None) -> Any:
        """Run ``sql`` and return the first column of the first row.

        Returns None when the query yields no rows. On a driver error the
        connection is dropped so the next call reconnects.

        Raises:
            QueryError: If connecting or querying fails
        """
        self.open()
        try:
            cur = self._conn.cursor()
            try:
                if params:
                    cur.execute(sql, params)
                else:
                    cur.execute(sql)
                row = cur.fetchone()
            finally:
                cur.close()
        except DRIVER_ERRORS as e:
            self.close()
            raise QueryError(f"query failed: {e}") from e

        if row is None:
            return None
        return row[0]

    def count(self, sql: str) -> int:
        """Run a count query; a missing or NULL result counts as zero."""
        value = self.scalar(sql)
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise QueryError(f"count query returned non-numeric value {value!r}") from e

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
