"""
Translation Worker
==================
Background loop that advances every active job with the worker tick budget,
so jobs finish even when no client is polling. It also prunes the result
cache once per cleanup interval.
"""
import threading
import time
from typing import List

from poem_translator.config import config
from poem_translator.database.repositories import JobStateStore, get_job_store
from poem_translator.exceptions import JobNotFoundError
from poem_translator.models.job import TickResult
from poem_translator.services.cache_service import TranslationCache
from poem_translator.services.scheduler import TickScheduler, get_scheduler
from poem_translator.utils.logging import get_logger, debug_print


class TranslationWorker:

    def __init__(
        self,
        scheduler: TickScheduler = None,
        store: JobStateStore = None,
        budget_ms: int = None,
        poll_interval: float = None,
        cache: TranslationCache = None,
        cleanup_interval_seconds: float = None
    ):
        self.scheduler = scheduler or get_scheduler()
        self.store = store or get_job_store()
        self.budget_ms = budget_ms or config.scheduler.worker_tick_budget_ms
        self.poll_interval = config.scheduler.worker_poll_interval if poll_interval is None else poll_interval
        self.cache = cache or self.scheduler.translator.cache
        self.cleanup_interval_seconds = (
            config.cache.cleanup_interval_hours * 3600 if cleanup_interval_seconds is None
            else cleanup_interval_seconds
        )
        self._next_cleanup = 0.0
        self.logger = get_logger().scheduler_logger
        self._stop = threading.Event()

    def run_once(self) -> List[TickResult]:
        """Tick each pending or processing job once."""
        results = []
        for job_id in self.store.list_active_job_ids():
            if self._stop.is_set():
                break
            try:
                results.append(self.scheduler.run_tick(job_id, budget_ms=self.budget_ms))
            except JobNotFoundError:
                # Superseded between listing and ticking
                continue
            except Exception as e:
                self.logger.exception(f"Tick failed for job {job_id}: {e}")
        return results

    def cleanup_cache_if_due(self) -> bool:
        """Drop expired and over-age cache rows at most once per cleanup interval."""
        now = time.monotonic()
        if now < self._next_cleanup:
            return False
        self._next_cleanup = now + self.cleanup_interval_seconds
        removed = self.cache.cleanup()
        self.logger.info(f"Cache cleanup removed {removed} entries")
        return True

    def run_forever(self):
        """Loop until stop() is called; sleeps only when nothing moved."""
        self.logger.info(f"Worker started (budget {self.budget_ms}ms, poll {self.poll_interval}s)")
        debug_print("Translation worker running", 'INFO', 'WORKER')
        while not self._stop.is_set():
            self.cleanup_cache_if_due()
            results = self.run_once()
            progressed = any(r.translated or r.failed for r in results)
            if not progressed:
                self._stop.wait(self.poll_interval)
        self.logger.info("Worker stopped")

    def stop(self):
        self._stop.set()


def run_worker():
    """Run the worker in the foreground until interrupted."""
    worker = TranslationWorker()
    try:
        worker.run_forever()
    except KeyboardInterrupt:
        worker.stop()
