#!/usr/bin/env python3
"""
Database Migration Runner

Applies every migration from db_schema.MIGRATIONS that is not yet in the
`migrations` ledger, in declaration order. Each migration runs in its own
transaction together with its ledger insert, so an interrupted migration
is never recorded. Running it again once everything is applied is a no-op.

Usage:
    python3 migrate_db.py <path_to_database.db>

Example:
    python3 migrate_db.py ~/.local/share/photobooth/photobooth.db
"""

import logging
import os
import sqlite3
import sys
from datetime import datetime

from db_schema import MIGRATIONS, MIGRATIONS_TABLE_SCHEMA

logger = logging.getLogger(__name__)


def get_applied_migrations(conn):
    """Names already recorded in the ledger"""
    conn.execute(MIGRATIONS_TABLE_SCHEMA)
    rows = conn.execute("SELECT name FROM migrations ORDER BY id").fetchall()
    return [row[0] for row in rows]


def get_pending_migrations(conn, migrations=None):
    migrations = MIGRATIONS if migrations is None else migrations
    applied = set(get_applied_migrations(conn))
    return [m for m in migrations if m.name not in applied]


def apply_migration(conn, migration):
    """
    Run one migration and record it, atomically.

    Args:
        conn: SQLite connection in autocommit mode (isolation_level=None)
        migration: db_schema.Migration
    """
    conn.execute("BEGIN")
    try:
        for statement in migration.statements:
            conn.execute(statement)
        conn.execute(
            "INSERT INTO migrations (name, applied_at) VALUES (?, ?)",
            (migration.name, datetime.now().isoformat()),
        )
    except Exception:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def run_migrations(conn, migrations=None):
    """
    Apply pending migrations in order.

    Args:
        conn: SQLite connection in autocommit mode (isolation_level=None)
        migrations: optional override of db_schema.MIGRATIONS

    Returns:
        list: names of the migrations applied by this call
    """
    applied = []
    for migration in get_pending_migrations(conn, migrations):
        logger.info(f"Running migration: {migration.name}")
        apply_migration(conn, migration)
        logger.info(f"Migration completed: {migration.name}")
        applied.append(migration.name)
    return applied


def migrate_database_file(db_path):
    """Open a database file, apply pending migrations, report to stdout"""
    if not os.path.exists(db_path):
        print(f"❌ Database not found: {db_path}")
        return False

    print(f"🔍 Checking database schema: {db_path}\n")

    conn = sqlite3.connect(db_path, isolation_level=None)
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        pending = get_pending_migrations(conn)
        if not pending:
            print("✅ Schema is up to date!")
            return True

        print(f"⚠️  Pending migrations: {', '.join(m.name for m in pending)}\n")
        for name in run_migrations(conn):
            print(f"  ✓ Applied: {name}")
    except sqlite3.Error as e:
        print(f"  ❌ Migration failed: {e}")
        return False
    finally:
        conn.close()

    print("\n✅ Migration complete!")
    return True


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print("Usage: python3 migrate_db.py <path_to_database.db>")
        print("\nExample:")
        print("  python3 migrate_db.py ~/.local/share/photobooth/photobooth.db")
        sys.exit(1)

    success = migrate_database_file(sys.argv[1])
    sys.exit(0 if success else 1)
