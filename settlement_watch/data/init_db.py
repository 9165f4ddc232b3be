"""CLI script to initialize the demo settlement database."""

import sys

from .db import QueryError, connect, create_schema
from ..config.settings import get_settings


def main(dsn: str | None = None) -> int:
    """Create the demo settlement tables in the configured data store."""
    dsn = dsn or get_settings().DSN
    print(f"Initializing database at {dsn}...")

    try:
        conn = connect(dsn)
    except QueryError as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1

    try:
        print("Creating settlement schema...")
        create_schema(conn)

        cur = conn.cursor()
        try:
            cur.execute("SELECT count(*) FROM bill_payment")
            total = cur.fetchone()[0]
        finally:
            cur.close()

        print("Database initialized successfully!")
        print(f"bill_payment currently holds {total} rows")
    except Exception as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1
    finally:
        conn.close()

    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else None))
