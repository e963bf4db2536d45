"""
Tick Scheduler
==============
Advance a job by one bounded tick.

A tick builds the eligible set (pending, queued, failed past backoff, or
stale processing), reserves rate-limit slots, claims units in the store
before dispatching them, and starts at most ``max_units_per_tick`` units
(the concurrency bound unless configured) with at most ``concurrency`` in
flight. Every outcome is written back through a compare-and-set on the
unit's claim token. The time budget only stops new dispatches; calls already
in flight are allowed to finish, up to a hard per-call timeout.
"""
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from poem_translator.config import config
from poem_translator.config.constants import (
    ERROR_HISTORY_LIMIT,
    ErrorCode,
    JobStatus,
    UnitStatus,
)
from poem_translator.database.repositories import JobStateStore, get_job_store
from poem_translator.exceptions import (
    InvalidRetryError,
    JobNotFoundError,
    UnitBusyError,
    UnitNotFoundError,
)
from poem_translator.models.job import (
    RateLimitDecision,
    TickResult,
    TranslationJob,
    Unit,
    UnitRetryResult,
)
from poem_translator.models.translation import (
    TranslationFailure,
    TranslationOutcome,
    TranslationResult,
    UnitContext,
)
from poem_translator.services.backoff import backoff_until, is_eligible
from poem_translator.services.notifier import BestEffortNotifier, get_notifier
from poem_translator.services.progress import summarize
from poem_translator.services.rate_limiter import RateLimiter, get_rate_limiter, rate_limit_key
from poem_translator.services.unit_translator import UnitTranslator, get_unit_translator
from poem_translator.utils.clock import now_ms
from poem_translator.utils.logging import get_logger, debug_print


def build_unit_context(job: TranslationJob, unit: Unit, force_refresh: bool = False) -> UnitContext:
    """Neighbouring units, the whole poem and position flags for one unit."""
    indices = sorted(job.units)
    prev_unit = job.units.get(unit.unit_index - 1)
    next_unit = job.units.get(unit.unit_index + 1)
    return UnitContext(
        job_id=job.job_id,
        unit_index=unit.unit_index,
        source_text=unit.original_text,
        prev_text=prev_unit.original_text if prev_unit else None,
        next_text=next_unit.original_text if next_unit else None,
        full_text='\n\n'.join('\n'.join(lines) for lines in job.segments),
        is_first=unit.unit_index == indices[0],
        is_last=unit.unit_index == indices[-1],
        source_language=job.source_language,
        target_language=job.target_language,
        model=job.model,
        preferences=job.preferences,
        force_refresh=force_refresh
    )


class TickScheduler:
    """Orchestrates unit translations for jobs, one bounded tick at a time."""

    def __init__(
        self,
        store: JobStateStore = None,
        translator: UnitTranslator = None,
        rate_limiter: RateLimiter = None,
        notifier: BestEffortNotifier = None,
        concurrency: int = None,
        max_units_per_tick: int = None,
        max_retries: int = None,
        stale_processing_seconds: int = None,
        call_timeout_seconds: float = None,
        clock: Callable[[], int] = now_ms
    ):
        self.store = store or get_job_store()
        self.translator = translator or get_unit_translator()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.notifier = notifier or get_notifier()
        self.concurrency = concurrency or config.scheduler.concurrency
        self.max_units_per_tick = (
            max_units_per_tick or config.scheduler.max_units_per_tick or self.concurrency
        )
        self.max_retries = config.scheduler.max_retries_per_unit if max_retries is None else max_retries
        self.stale_processing_ms = 1000 * (
            config.scheduler.stale_processing_seconds if stale_processing_seconds is None
            else stale_processing_seconds
        )
        self.call_timeout_seconds = call_timeout_seconds or config.scheduler.unit_call_timeout_seconds
        self.clock = clock
        self.logger = get_logger().scheduler_logger

    # ---- selection -----------------------------------------------------

    def _is_stale(self, unit: Unit, now: int) -> bool:
        return unit.status == UnitStatus.PROCESSING and unit.updated_at < now - self.stale_processing_ms

    def select_candidates(self, job: TranslationJob, now: int) -> List[Unit]:
        """Eligible units in ascending index order. Units still in backoff are skipped silently."""
        candidates = []
        for unit in job.ordered_units():
            if unit.status in (UnitStatus.PENDING, UnitStatus.QUEUED):
                candidates.append(unit)
            elif unit.status == UnitStatus.FAILED:
                if is_eligible(now, unit.backoff_until) and not unit.retries_exhausted(self.max_retries):
                    candidates.append(unit)
            elif self._is_stale(unit, now):
                self.logger.warning(
                    f"Recovering unit {unit.unit_index} of job {job.job_id} stuck in processing"
                )
                candidates.append(unit)
        return candidates

    def compute_job_status(self, job: TranslationJob) -> JobStatus:
        """
        completed when every unit is translated; failed only when no
        untranslated unit can be retried automatically any more.
        """
        units = job.ordered_units()
        remaining = [u for u in units if u.status != UnitStatus.TRANSLATED]
        if units and not remaining:
            return JobStatus.COMPLETED
        if self.max_retries > 0 and all(
                u.status == UnitStatus.FAILED and u.retries_exhausted(self.max_retries) for u in remaining):
            return JobStatus.FAILED
        if job.status == JobStatus.PENDING and all(u.status == UnitStatus.PENDING for u in units):
            return JobStatus.PENDING
        return JobStatus.PROCESSING

    # ---- ticks ---------------------------------------------------------

    def run_tick(self, job_id: str, budget_ms: int = None, user_id: str = None) -> TickResult:
        """
        Run one tick for a job.

        Args:
            job_id: Job to advance
            budget_ms: Advisory time budget for starting new unit calls
            user_id: Subject for rate limiting (defaults to the job owner)

        Returns:
            TickResult with the progress summary after the tick
        """
        started = time.monotonic()
        budget_ms = budget_ms or config.scheduler.ui_tick_budget_ms
        job = self._load_job(job_id)
        now = self.clock()

        if job.units and all(u.status == UnitStatus.TRANSLATED for u in job.units.values()):
            self._refresh_job_status(job, reload=False)
            return TickResult(job_id=job_id, status=job.status, progress=summarize(job))

        candidates = self.select_candidates(job, now)
        if not candidates:
            self._refresh_job_status(job, reload=False)
            return TickResult(job_id=job_id, status=job.status, progress=summarize(job),
                              elapsed_ms=self._elapsed_ms(started))

        subject = rate_limit_key(user_id or job.user_id)
        decision = self.rate_limiter.check_and_reserve(subject)
        if not decision.allowed:
            self.logger.info(f"Job {job_id} rate limited until {decision.reset_at}")
            return TickResult(job_id=job_id, status=job.status, progress=summarize(job),
                              rate_limited=True, rate_limit=decision,
                              elapsed_ms=self._elapsed_ms(started))

        result = TickResult(job_id=job_id, status=job.status, progress=summarize(job),
                            rate_limit=decision)
        self._dispatch(job, candidates, subject, decision, started, budget_ms, result)

        job = self._refresh_job_status(job)
        result.status = job.status
        result.progress = summarize(job)
        result.elapsed_ms = self._elapsed_ms(started)
        debug_print(
            f"[TICK] job={job_id} attempted={result.attempted} translated={result.translated} "
            f"failed={result.failed}", 'INFO', 'SCHEDULER', job_id=job_id
        )
        return result

    def _dispatch(
        self,
        job: TranslationJob,
        candidates: List[Unit],
        subject: str,
        first_decision: RateLimitDecision,
        started: float,
        budget_ms: int,
        result: TickResult
    ) -> None:
        """
        Rolling dispatch: at most ``concurrency`` in flight and ``max_units_per_tick``
        started in total. Freed slots are refilled only while budget remains.
        """
        queue = list(candidates)
        in_flight: Dict[Future, tuple] = {}
        reservation: Optional[RateLimitDecision] = first_decision
        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix=f"tick-{job.job_id[:8]}")

        def start_next() -> bool:
            """Reserve, claim and submit the next candidate. False when nothing more can start."""
            nonlocal reservation
            while queue:
                if len(result.attempted) >= self.max_units_per_tick:
                    queue.clear()
                    return False
                if reservation is None:
                    reservation = self.rate_limiter.check_and_reserve(subject)
                    result.rate_limit = reservation
                    if not reservation.allowed:
                        queue.clear()
                        return False
                unit = queue.pop(0)
                token = self.store.claim_unit(job.job_id, unit.unit_index, unit.attempt)
                if token is None:
                    # Lost the race to another tick; the reserved slot stays spent
                    self.logger.debug(f"Unit {unit.unit_index} of job {job.job_id} claimed elsewhere")
                    reservation = None
                    continue
                reservation = None
                if job.status != JobStatus.PROCESSING:
                    self.store.update_job_status(job.job_id, JobStatus.PROCESSING)
                    job.status = JobStatus.PROCESSING
                ctx = build_unit_context(job, unit)
                future = executor.submit(self.translator.translate_unit, ctx)
                in_flight[future] = (unit, token, time.monotonic() + self.call_timeout_seconds)
                result.attempted.append(unit.unit_index)
                return True
            return False

        try:
            # The first batch always starts so every tick makes progress
            while len(in_flight) < self.concurrency and start_next():
                pass

            while in_flight:
                next_deadline = min(deadline for _, _, deadline in in_flight.values())
                done, _ = wait(list(in_flight), timeout=max(0.0, next_deadline - time.monotonic()),
                               return_when=FIRST_COMPLETED)

                for future in done:
                    unit, token, _ = in_flight.pop(future)
                    self._record(job, unit, token, self._outcome_of(future, unit), result)

                expired = [f for f, (_, _, deadline) in in_flight.items()
                           if not f.done() and deadline <= time.monotonic()]
                for future in expired:
                    unit, token, _ = in_flight.pop(future)
                    self.logger.error(f"Unit {unit.unit_index} of job {job.job_id} exceeded the call timeout")
                    self._record(job, unit, token, TranslationFailure(
                        unit_index=unit.unit_index,
                        message=f"Unit call exceeded {self.call_timeout_seconds}s",
                        code=ErrorCode.TIMEOUT
                    ), result)

                if self._elapsed_ms(started) >= budget_ms:
                    if queue:
                        result.budget_exhausted = True
                    continue
                while len(in_flight) < self.concurrency and start_next():
                    pass
        finally:
            # Timed-out calls keep their threads; nothing waits for them
            executor.shutdown(wait=False)

    def _outcome_of(self, future: Future, unit: Unit) -> TranslationOutcome:
        try:
            return future.result()
        except Exception as e:
            self.logger.exception(f"Unexpected error translating unit {unit.unit_index}: {e}")
            return TranslationFailure(
                unit_index=unit.unit_index,
                message=f"{type(e).__name__}: {e}",
                code=ErrorCode.UNKNOWN
            )

    def _record(self, job: TranslationJob, unit: Unit, token: int,
                outcome: TranslationOutcome, result: TickResult) -> bool:
        applied = self.apply_outcome(job.job_id, unit, token, outcome)
        if not applied:
            return False
        if isinstance(outcome, TranslationResult):
            result.translated.append(unit.unit_index)
        else:
            result.failed.append(unit.unit_index)
        return True

    def apply_outcome(self, job_id: str, unit: Unit, token: int, outcome: TranslationOutcome) -> bool:
        """
        Write one outcome back to the unit, only if the claim is still ours.

        A failure increments the retry count and sets ``backoff_until`` from it.
        """
        if isinstance(outcome, TranslationResult):
            applied = self.store.update_unit(job_id, unit.unit_index, {
                'status': UnitStatus.TRANSLATED,
                'translations': outcome.variants,
                'model_used': outcome.model_used,
                'fallback_mode': outcome.fallback_mode,
                'backoff_until': None,
                'last_error': None,
                'error_code': None,
            }, expected_attempt=token)
        else:
            now = self.clock()
            retry_count = unit.retry_count + 1
            history = unit.error_history + [{
                'at': now,
                'code': outcome.code.value,
                'message': outcome.message,
                'retryable': outcome.retryable,
            }]
            applied = self.store.update_unit(job_id, unit.unit_index, {
                'status': UnitStatus.FAILED,
                'retry_count': retry_count,
                'backoff_until': backoff_until(now, retry_count),
                'last_error': outcome.message,
                'error_code': outcome.code,
                'error_history': history[-ERROR_HISTORY_LIMIT:],
            }, expected_attempt=token)

        if not applied:
            self.logger.info(f"Discarded stale result for unit {unit.unit_index} of job {job_id}")
        return applied

    # ---- retries -------------------------------------------------------

    def retry_unit(self, job_id: str, unit_index: int, force: bool = False,
                   user_id: str = None) -> UnitRetryResult:
        """
        Make one unit eligible regardless of backoff and translate it now.

        A translated unit is only retranslated with ``force``, which also
        drops the unit's cached result. If the rate limit denies the attempt the
        unit is left queued for the next tick.
        """
        job = self._load_job(job_id)
        unit = job.units.get(unit_index)
        if unit is None:
            raise UnitNotFoundError(job_id, unit_index)

        now = self.clock()
        if unit.status == UnitStatus.TRANSLATED and not force:
            raise InvalidRetryError(f"Unit {unit_index} is already translated; use force to retranslate")
        if unit.status == UnitStatus.PROCESSING and not self._is_stale(unit, now):
            raise UnitBusyError(f"Unit {unit_index} is being translated")

        queued_token = unit.attempt + 1
        if not self.store.update_unit(job_id, unit_index, {
            'status': UnitStatus.QUEUED,
            'backoff_until': None,
            'attempt': queued_token,
        }, expected_attempt=unit.attempt, allow_revert=True):
            raise UnitBusyError(f"Unit {unit_index} changed while queuing the retry")
        unit.status = UnitStatus.QUEUED
        unit.attempt = queued_token
        self.logger.info(f"Unit {unit_index} of job {job_id} queued for retry (force={force})")
        if force:
            # A queued unit may be picked up by a later tick, which reads the cache
            self.translator.cache.invalidate(job_id, [unit_index])

        decision = self.rate_limiter.check_and_reserve(rate_limit_key(user_id or job.user_id))
        if not decision.allowed:
            job = self._refresh_job_status(job)
            return UnitRetryResult(job_id=job_id, unit=job.units[unit_index],
                                   progress=summarize(job), rate_limited=True, rate_limit=decision)

        token = self.store.claim_unit(job_id, unit_index, queued_token)
        if token is None:
            raise UnitBusyError(f"Unit {unit_index} was claimed by another tick")
        if job.status != JobStatus.PROCESSING:
            self.store.update_job_status(job_id, JobStatus.PROCESSING)
            job.status = JobStatus.PROCESSING

        ctx = build_unit_context(job, unit, force_refresh=force)
        try:
            outcome = self.translator.translate_unit(ctx)
        except Exception as e:
            self.logger.exception(f"Unexpected error retrying unit {unit_index}: {e}")
            outcome = TranslationFailure(unit_index=unit_index, message=f"{type(e).__name__}: {e}",
                                         code=ErrorCode.UNKNOWN)
        applied = self.apply_outcome(job_id, unit, token, outcome)

        job = self._refresh_job_status(job)
        if applied and isinstance(outcome, TranslationResult):
            self.notifier.notify('unit.translated', {
                'job_id': job_id,
                'thread_id': job.thread_id,
                'unit_index': unit_index,
            })
        return UnitRetryResult(job_id=job_id, unit=job.units[unit_index],
                               progress=summarize(job), rate_limit=decision)

    def retry_segment(self, job_id: str, segment_index: int, clear_results: bool = False,
                      budget_ms: int = None, user_id: str = None) -> TickResult:
        """Reset every unit of a segment to pending, then run a tick immediately."""
        job = self._load_job(job_id)
        if not 0 <= segment_index < len(job.segments):
            raise InvalidRetryError(f"Segment {segment_index} does not exist in job {job_id}")

        indices = self.store.reset_segment(job_id, segment_index, clear_results=clear_results)
        if clear_results:
            self.translator.cache.invalidate(job_id, indices)
        return self.run_tick(job_id, budget_ms=budget_ms, user_id=user_id)

    # ---- helpers -------------------------------------------------------

    def _load_job(self, job_id: str) -> TranslationJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        self.store.repair_units(job)
        return job

    def _refresh_job_status(self, job: TranslationJob, reload: bool = True) -> TranslationJob:
        """Recompute the job status from its units and persist it if it changed."""
        if reload:
            job = self.store.get_job(job.job_id) or job
        status = self.compute_job_status(job)
        if status != job.status:
            self.store.update_job_status(job.job_id, status)
            self.logger.info(f"Job {job.job_id} {job.status.value} -> {status.value}")
            job.status = status
            if status == JobStatus.COMPLETED:
                self.notifier.notify('job.completed', {
                    'job_id': job.job_id,
                    'thread_id': job.thread_id,
                    'total_units': job.total_units,
                })
        return job

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)


_scheduler_instance: Optional[TickScheduler] = None


def get_scheduler() -> TickScheduler:
    """Get or create the global scheduler."""
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = TickScheduler()
    return _scheduler_instance
