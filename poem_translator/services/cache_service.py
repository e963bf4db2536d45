"""
Translation Cache Service
=========================
Result cache keyed by (job, unit, model) so repeated attempts skip the provider.
"""
import json
import sqlite3
import time
from typing import Optional, Dict, Any, List
from poem_translator.config import config
from poem_translator.utils.logging import get_logger, debug_print


def cache_key(job_id: str, unit_index: int, model: str) -> str:
    return f"translate-unit:{job_id}:unit:{unit_index}:model:{model}"


class TranslationCache:
    """SQLite-backed cache of normalized unit translation payloads with a TTL."""

    def __init__(self, db_path: str = None, ttl_seconds: int = None):
        self.db_path = db_path or config.paths.cache_db_path
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.cache.ttl_seconds
        self.logger = get_logger().db_logger
        self._init_db()

    def _init_db(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS unit_translation_cache (
                    cache_key TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    unit_index INTEGER NOT NULL,
                    model TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
            ''')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_cache_unit ON unit_translation_cache(job_id, unit_index)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_cache_expiry ON unit_translation_cache(expires_at)')

    def get(self, job_id: str, unit_index: int, model: str) -> Optional[Dict[str, Any]]:
        """
        Get a cached payload if present and not expired.

        Args:
            job_id: Job identifier
            unit_index: Unit position in the job
            model: Model the result was requested from

        Returns:
            The stored payload dict, or None
        """
        if not config.cache.enabled:
            return None

        key = cache_key(job_id, unit_index, model)
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute('''
                    SELECT payload FROM unit_translation_cache
                    WHERE cache_key = ? AND expires_at > ?
                ''', (key, time.time())).fetchone()
        except sqlite3.Error as e:
            self.logger.error(f"Cache lookup error: {e}")
            return None

        if row:
            debug_print(f"[CACHE HIT] {key}", 'DEBUG', 'CACHE')
            return json.loads(row[0])
        debug_print(f"[CACHE MISS] {key}", 'DEBUG', 'CACHE')
        return None

    def set(self, job_id: str, unit_index: int, model: str, payload: Dict[str, Any]):
        """Store a payload, replacing any previous entry for the same key."""
        if not config.cache.enabled:
            return

        now = time.time()
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute('''
                    INSERT OR REPLACE INTO unit_translation_cache
                    (cache_key, job_id, unit_index, model, payload, created_at, expires_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (cache_key(job_id, unit_index, model), job_id, unit_index, model,
                      json.dumps(payload), now, now + self.ttl_seconds))
        except sqlite3.Error as e:
            self.logger.error(f"Cache store error: {e}")

    def invalidate(self, job_id: str, unit_indices: List[int] = None) -> int:
        """Drop entries of a job, optionally only for some units. Returns rows removed."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                if unit_indices is None:
                    cursor = conn.execute(
                        "DELETE FROM unit_translation_cache WHERE job_id = ?", (job_id,)
                    )
                else:
                    placeholders = ', '.join('?' for _ in unit_indices) or 'NULL'
                    cursor = conn.execute(
                        f"DELETE FROM unit_translation_cache WHERE job_id = ? AND unit_index IN ({placeholders})",
                        (job_id, *unit_indices)
                    )
                return cursor.rowcount
        except sqlite3.Error as e:
            self.logger.error(f"Cache invalidate error: {e}")
            return 0

    def cleanup(self, days: int = None) -> int:
        """
        Remove expired entries and entries older than the maximum age.

        Args:
            days: Maximum age in days (uses config if not specified)

        Returns:
            Number of rows removed
        """
        days = days or config.cache.max_age_days
        now = time.time()
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute(
                    "DELETE FROM unit_translation_cache WHERE expires_at <= ? OR created_at < ?",
                    (now, now - days * 86400)
                )
                if cursor.rowcount > 0:
                    self.logger.info(f"Cleaned up {cursor.rowcount} old cache entries")
                return cursor.rowcount
        except sqlite3.Error as e:
            self.logger.error(f"Cache cleanup error: {e}")
            return 0

    def clear(self):
        """Clear all cached translations."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("DELETE FROM unit_translation_cache")
                self.logger.info("Translation cache cleared")
        except sqlite3.Error as e:
            self.logger.error(f"Cache clear error: {e}")

    def get_stats(self) -> Dict[str, int]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                total = conn.execute("SELECT COUNT(*) FROM unit_translation_cache").fetchone()[0]
                live = conn.execute(
                    "SELECT COUNT(*) FROM unit_translation_cache WHERE expires_at > ?", (time.time(),)
                ).fetchone()[0]
                return {
                    'total_entries': total,
                    'live_entries': live,
                    'ttl_seconds': self.ttl_seconds
                }
        except sqlite3.Error:
            return {'total_entries': 0, 'live_entries': 0, 'ttl_seconds': self.ttl_seconds}


_cache_instance: Optional[TranslationCache] = None


def get_cache() -> TranslationCache:
    """Get or create the global cache instance."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = TranslationCache()
    return _cache_instance
