"""
Photobooth Store - the single long-lived database handle

Usage:
    store = PhotoboothStore()          # paths from config
    store.open()                       # idempotent; migrates + seeds settings row
    settings = SettingsService(store)
    ...
    store.close()

Every service takes the store in its constructor and reads
`store.connection` when it needs the database. The connection runs in
autocommit mode; multi-statement writes go through `store.transaction()`.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import config
from errors import InitializationError
from migrate_db import run_migrations

logger = logging.getLogger(__name__)


class PhotoboothStore:
    """
    Owns the SQLite connection shared by every service.

    Not thread-safe beyond what SQLite's WAL mode gives concurrent readers;
    the app runs single-threaded.
    """

    def __init__(self, db_path=None, default_save_directory=None, template_directory=None):
        """
        Args:
            db_path: database file (default: config.get_database_path())
            default_save_directory: where photos go when settings has no override
            template_directory: where template art/thumbnails live
        """
        self.db_path = db_path or config.get_database_path()
        self.default_save_directory = default_save_directory or config.get_default_save_directory()
        self.template_directory = template_directory or config.get_template_directory()
        self._conn = None

    @property
    def is_open(self):
        return self._conn is not None

    @property
    def connection(self):
        """The shared connection, opened on first use"""
        if self._conn is None:
            self.open()
        return self._conn

    def open(self):
        """
        Open (or create) the database, apply pragmas and pending migrations,
        and make sure the settings singleton row exists.

        Raises:
            InitializationError: the database cannot be opened or migrated
        """
        if self._conn is not None:
            return self._conn

        logger.info(f"Initializing database at: {self.db_path}")
        try:
            db_dir = os.path.dirname(os.path.abspath(self.db_path))
            os.makedirs(db_dir, exist_ok=True)

            conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")

            try:
                run_migrations(conn)
                self._ensure_default_settings(conn)
            except Exception:
                conn.close()
                raise
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise InitializationError(f"Failed to initialize database at {self.db_path}: {e}") from e

        self._conn = conn
        logger.info("Database initialized successfully")
        return conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Database connection closed.")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @contextmanager
    def transaction(self):
        """BEGIN ... COMMIT, rolled back if the block raises"""
        conn = self.connection
        conn.execute("BEGIN")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    @staticmethod
    def _ensure_default_settings(conn):
        """Row 1 of settings always exists once the store is open"""
        now = datetime.now().isoformat()
        cursor = conn.execute(
            "INSERT OR IGNORE INTO settings (id, created_at, updated_at) VALUES (1, ?, ?)",
            (now, now),
        )
        if cursor.rowcount:
            logger.info("Default settings initialized")
