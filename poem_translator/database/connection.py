"""
Database Connection Manager
===========================
Handles SQLite database connections with proper context management.
"""
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Generator, Union

from poem_translator.config import config
from poem_translator.utils.logging import get_logger


class Database:
    """
    Thread-safe SQLite database manager.

    Each thread gets its own connection; WAL mode lets pollers read while
    a tick is writing.
    """

    _instance: Optional['Database'] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Union[str, Path] = None):
        self.db_path = Path(db_path or config.paths.db_path)
        self.logger = get_logger().db_logger
        self._local = threading.local()
        self._initialized = False

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_instance(cls, db_path: Path = None) -> 'Database':
        """Get singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls(db_path)
            return cls._instance

    @property
    def connection(self) -> sqlite3.Connection:
        """Get thread-local connection."""
        if getattr(self._local, 'connection', None) is None:
            self._local.connection = self._create_connection()
        return self._local.connection

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=config.database.timeout
        )
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")

        return conn

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            self._create_tables()
            self._create_indexes()
            self._initialized = True

            self.logger.info(f"Database initialized: {self.db_path}")

    def _create_tables(self) -> None:
        with self.connection:
            self.connection.execute("""
                CREATE TABLE IF NOT EXISTS translation_jobs (
                    job_id TEXT PRIMARY KEY,
                    thread_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    source_text TEXT NOT NULL,
                    segments TEXT NOT NULL,
                    granularity TEXT NOT NULL DEFAULT 'line',
                    source_language TEXT,
                    target_language TEXT,
                    model TEXT,
                    preferences TEXT,
                    superseded INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    CONSTRAINT valid_status CHECK (
                        status IN ('pending', 'processing', 'completed', 'failed')
                    )
                )
            """)

            # One row per unit so that unit writes never touch sibling units
            self.connection.execute("""
                CREATE TABLE IF NOT EXISTS translation_units (
                    job_id TEXT NOT NULL,
                    unit_index INTEGER NOT NULL,
                    segment_index INTEGER NOT NULL,
                    line_number INTEGER NOT NULL,
                    original_text TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    translations TEXT NOT NULL DEFAULT '[]',
                    model_used TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    backoff_until INTEGER,
                    last_error TEXT,
                    error_code TEXT,
                    error_history TEXT NOT NULL DEFAULT '[]',
                    fallback_mode INTEGER NOT NULL DEFAULT 0,
                    attempt INTEGER NOT NULL DEFAULT 0,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY (job_id, unit_index),
                    FOREIGN KEY (job_id) REFERENCES translation_jobs(job_id),
                    CONSTRAINT valid_unit_status CHECK (
                        status IN ('pending', 'queued', 'processing', 'translated', 'failed')
                    )
                )
            """)

    def _create_indexes(self) -> None:
        with self.connection:
            self.connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_thread
                ON translation_jobs(thread_id, superseded)
            """)
            self.connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON translation_jobs(status, updated_at)
            """)
            self.connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_units_segment
                ON translation_units(job_id, segment_index)
            """)

    @contextmanager
    def transaction(self, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database transactions.

        With ``immediate`` the write lock is taken up front, so a
        read-then-write inside the block cannot interleave with another writer.
        """
        conn = self.connection
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            self.logger.error(f"Transaction rolled back: {e}")
            raise

    def execute(self, query: str, params: tuple = None) -> sqlite3.Cursor:
        try:
            if params:
                return self.connection.execute(query, params)
            return self.connection.execute(query)
        except sqlite3.Error as e:
            self.logger.error(f"Database error: {e}")
            raise

    def fetchone(self, query: str, params: tuple = None) -> Optional[sqlite3.Row]:
        cursor = self.execute(query, params)
        return cursor.fetchone()

    def fetchall(self, query: str, params: tuple = None) -> list:
        cursor = self.execute(query, params)
        return cursor.fetchall()

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            self.fetchone("SELECT 1")
            return True
        except sqlite3.Error:
            return False

    def close(self) -> None:
        """Close thread-local connection."""
        if getattr(self._local, 'connection', None) is not None:
            self._local.connection.close()
            self._local.connection = None


_database: Optional[Database] = None


def get_database() -> Database:
    """Get database singleton."""
    global _database
    if _database is None:
        _database = Database.get_instance()
        _database.initialize()
    return _database


def reset_database() -> None:
    """Reset database singleton (for testing)."""
    global _database
    if _database:
        _database.close()
    _database = None
    Database._instance = None
