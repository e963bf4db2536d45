"""
Rate Limiter
============
Fixed-window per-user counters that gate how many units may be dequeued.
"""
import sqlite3
import threading
from typing import Dict, Optional, Tuple
from poem_translator.config import config
from poem_translator.exceptions import CounterStoreUnavailable
from poem_translator.models.job import RateLimitDecision
from poem_translator.utils.clock import now_ms
from poem_translator.utils.logging import get_logger

# (allowed, count after the call, window reset timestamp in ms)
CounterResult = Tuple[bool, int, int]


def rate_limit_key(user_id: str, feature: str = None) -> str:
    """Counter key shared by every job of a user."""
    return f"ratelimit:{feature or config.rate_limit.feature}:{user_id}"


class MemoryCounterStore:
    """Process-local counters. Suitable for a single process and for tests."""

    def __init__(self):
        self._counters: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()

    def increment_if_below(self, key: str, limit: int, window_ms: int, now: int) -> CounterResult:
        with self._lock:
            count, reset_at = self._counters.get(key, (0, 0))
            if reset_at <= now:
                count, reset_at = 0, now + window_ms
            if count >= limit:
                self._counters[key] = (count, reset_at)
                return False, count, reset_at
            count += 1
            self._counters[key] = (count, reset_at)
            return True, count, reset_at

    def clear(self):
        with self._lock:
            self._counters.clear()


class SQLiteCounterStore:
    """
    Counters shared between processes through a SQLite file.

    Each call runs in its own IMMEDIATE transaction, so the read and the
    increment are atomic with respect to every other caller. The table is
    created on first use, so an unreachable file surfaces as
    ``CounterStoreUnavailable`` from a call rather than from the constructor.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or config.paths.rate_limit_db_path
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=config.database.timeout, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        if not self._schema_ready:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rate_limit_counters (
                    counter_key TEXT PRIMARY KEY,
                    count INTEGER NOT NULL,
                    reset_at INTEGER NOT NULL
                )
            """)
            self._schema_ready = True
        return conn

    def increment_if_below(self, key: str, limit: int, window_ms: int, now: int) -> CounterResult:
        try:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT count, reset_at FROM rate_limit_counters WHERE counter_key = ?",
                    (key,)
                ).fetchone()
                count, reset_at = row if row else (0, 0)
                if reset_at <= now:
                    count, reset_at = 0, now + window_ms

                allowed = count < limit
                if allowed:
                    count += 1
                conn.execute("""
                    INSERT INTO rate_limit_counters (counter_key, count, reset_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(counter_key) DO UPDATE SET
                        count = excluded.count, reset_at = excluded.reset_at
                """, (key, count, reset_at))
                conn.execute("COMMIT")
                return allowed, count, reset_at
            except sqlite3.Error:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CounterStoreUnavailable(f"Counter store error: {e}") from e

    def clear(self):
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise CounterStoreUnavailable(f"Counter store error: {e}") from e
        try:
            conn.execute("DELETE FROM rate_limit_counters")
        finally:
            conn.close()


class RateLimiter:
    """
    Answers "may one more unit be dequeued now" for a subject key.

    A granted call reserves one slot; a denied call consumes nothing. When
    the counter store is unreachable the configured policy decides:
    fail open (allow) or fail closed (deny).
    """

    def __init__(self, store=None, fail_open: bool = None):
        self.store = store if store is not None else self._default_store()
        self.fail_open = config.rate_limit_fails_open if fail_open is None else fail_open
        self.logger = get_logger().scheduler_logger

    @staticmethod
    def _default_store():
        if config.rate_limit.backend == 'memory':
            return MemoryCounterStore()
        return SQLiteCounterStore()

    def check_and_reserve(self, subject_key: str, limit: int = None, window_seconds: int = None) -> RateLimitDecision:
        limit = config.rate_limit.limit if limit is None else limit
        window_seconds = config.rate_limit.window_seconds if window_seconds is None else window_seconds
        now = now_ms()

        try:
            allowed, count, reset_at = self.store.increment_if_below(
                subject_key, limit, window_seconds * 1000, now
            )
        except CounterStoreUnavailable as e:
            policy = "open" if self.fail_open else "closed"
            self.logger.warning(f"Rate limit store unavailable, failing {policy}: {e}")
            return RateLimitDecision(
                allowed=self.fail_open,
                remaining=limit if self.fail_open else 0,
                reset_at=now + window_seconds * 1000
            )

        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, limit - count),
            reset_at=reset_at
        )


_limiter_instance: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the global rate limiter."""
    global _limiter_instance
    if _limiter_instance is None:
        _limiter_instance = RateLimiter()
    return _limiter_instance
