"""Payment reconciliation database management CLI.

Provides commands to create and drop the payment record schema in the
database named by ``DATABASE_URL``.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import asyncio
import sys


async def _run(action: str, database_url: str) -> None:
    from reconciliation.store import SqlAlchemyPaymentStore

    store = SqlAlchemyPaymentStore(database_url)
    try:
        if action == "setup-db":
            await store.create_schema()
        else:
            await store.drop_schema()
    finally:
        await store.dispose()


def setup_database(database_url=None):
    """Create the payment record schema."""
    from reconciliation.config import get_settings

    url = database_url or get_settings().DATABASE_URL
    if not url:
        print("DATABASE_URL is not set; nothing to do.")
        return
    print("Creating payment record schema...")
    asyncio.run(_run("setup-db", url))
    print("Done.")


def drop_database(database_url=None):
    """Drop the payment record schema."""
    from reconciliation.config import get_settings

    url = database_url or get_settings().DATABASE_URL
    if not url:
        print("DATABASE_URL is not set; nothing to do.")
        return
    print("Dropping payment record schema...")
    asyncio.run(_run("drop-db", url))
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Payment reconciliation database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup-db", help="Create all database tables")
    setup_parser.add_argument("--database-url", help="Database URL (default: DATABASE_URL setting)")

    drop_parser = subparsers.add_parser("drop-db", help="Drop all database tables")
    drop_parser.add_argument("--database-url", help="Database URL (default: DATABASE_URL setting)")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database(args.database_url)
    elif args.command == "drop-db":
        drop_database(args.database_url)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
