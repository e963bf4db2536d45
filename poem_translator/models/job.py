"""
Job Data Models
===============
Translation jobs, their units, and the read-side projections derived from them.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from poem_translator.config.constants import JobStatus, UnitStatus
from poem_translator.models.translation import TranslationVariant
from poem_translator.utils.clock import iso_from_ms


@dataclass
class Unit:
    """
    The smallest schedulable piece of work: one line or one stanza.

    ``attempt`` is a claim token advanced on every claim or reset; result
    writes compare against it so that a stale attempt cannot overwrite
    newer state.
    """
    job_id: str
    unit_index: int
    segment_index: int
    line_number: int
    original_text: str
    status: UnitStatus = UnitStatus.PENDING
    translations: List[TranslationVariant] = field(default_factory=list)
    model_used: Optional[str] = None
    retry_count: int = 0
    backoff_until: Optional[int] = None
    last_error: Optional[str] = None
    error_code: Optional[str] = None
    error_history: List[Dict[str, Any]] = field(default_factory=list)
    fallback_mode: bool = False
    attempt: int = 0
    updated_at: int = 0

    @property
    def is_translated(self) -> bool:
        return self.status == UnitStatus.TRANSLATED

    def retries_exhausted(self, max_retries: int) -> bool:
        """A cap of 0 means retries are unbounded."""
        return max_retries > 0 and self.retry_count >= max_retries

    def to_dict(self) -> dict:
        return {
            'unit_index': self.unit_index,
            'segment_index': self.segment_index,
            'line_number': self.line_number,
            'original_text': self.original_text,
            'translation_status': self.status.value,
            'translations': [t.to_dict() for t in self.translations],
            'model_used': self.model_used,
            'retry_count': self.retry_count,
            'backoff_until': self.backoff_until,
            'last_error': self.last_error,
            'error_code': self.error_code,
            'error_history': list(self.error_history),
            'fallback_mode': self.fallback_mode,
            'updated_at': iso_from_ms(self.updated_at),
        }


@dataclass
class TranslationJob:
    """One translation job per thread; superseded rather than deleted."""
    job_id: str
    thread_id: str
    user_id: str
    source_text: str
    segments: List[List[str]]
    granularity: str = "line"
    status: JobStatus = JobStatus.PENDING
    source_language: str = ""
    target_language: str = ""
    model: str = ""
    preferences: Dict[str, Any] = field(default_factory=dict)
    superseded: bool = False
    created_at: int = 0
    updated_at: int = 0
    units: Dict[int, Unit] = field(default_factory=dict)

    @property
    def total_units(self) -> int:
        return len(self.units)

    def ordered_units(self) -> List[Unit]:
        return [self.units[i] for i in sorted(self.units)]

    def to_dict(self, include_units: bool = False) -> dict:
        result = {
            'job_id': self.job_id,
            'thread_id': self.thread_id,
            'user_id': self.user_id,
            'status': self.status.value,
            'granularity': self.granularity,
            'source_language': self.source_language,
            'target_language': self.target_language,
            'model': self.model,
            'segment_count': len(self.segments),
            'total_units': self.total_units,
            'superseded': self.superseded,
            'created_at': iso_from_ms(self.created_at),
            'updated_at': iso_from_ms(self.updated_at),
        }
        if include_units:
            result['units'] = [u.to_dict() for u in self.ordered_units()]
        return result


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit reservation. Never cached across ticks."""
    allowed: bool
    remaining: int
    reset_at: int

    def to_dict(self) -> dict:
        return {
            'allowed': self.allowed,
            'remaining': self.remaining,
            'reset_at': self.reset_at,
        }


@dataclass
class ProgressCounts:
    completed: int = 0
    processing: int = 0
    queued: int = 0
    pending: int = 0
    failed: int = 0
    total: int = 0

    @property
    def percent(self) -> float:
        if not self.total:
            return 0.0
        return round(self.completed / self.total * 100, 1)

    def to_dict(self) -> dict:
        return {
            'completed': self.completed,
            'processing': self.processing,
            'queued': self.queued,
            'pending': self.pending,
            'failed': self.failed,
            'total': self.total,
            'percent': self.percent,
        }


@dataclass
class ProgressSummary:
    """Read-only projection of a job for client polling."""
    job_id: str
    status: JobStatus
    counts: ProgressCounts
    ready_units: List[Unit] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'job_id': self.job_id,
            'status': self.status.value,
            'progress': self.counts.to_dict(),
            'ready_units': [u.to_dict() for u in self.ready_units],
        }


@dataclass
class TickResult:
    """What one tick did, plus the progress afterwards."""
    job_id: str
    status: JobStatus
    progress: ProgressSummary
    rate_limited: bool = False
    rate_limit: Optional[RateLimitDecision] = None
    attempted: List[int] = field(default_factory=list)
    translated: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    budget_exhausted: bool = False
    elapsed_ms: int = 0

    def to_dict(self) -> dict:
        result = self.progress.to_dict()
        result.update({
            'status': self.status.value,
            'rate_limited': self.rate_limited,
            'attempted': list(self.attempted),
            'translated': list(self.translated),
            'failed': list(self.failed),
            'budget_exhausted': self.budget_exhausted,
            'elapsed_ms': self.elapsed_ms,
        })
        if self.rate_limit is not None:
            result['rate_limit'] = self.rate_limit.to_dict()
        return result


@dataclass
class UnitRetryResult:
    """Outcome of a user-triggered single unit retry."""
    job_id: str
    unit: Unit
    progress: ProgressSummary
    rate_limited: bool = False
    rate_limit: Optional[RateLimitDecision] = None

    def to_dict(self) -> dict:
        result = {
            'job_id': self.job_id,
            'rate_limited': self.rate_limited,
            'unit': self.unit.to_dict(),
            'status': self.progress.status.value,
            'progress': self.progress.counts.to_dict(),
        }
        if self.rate_limit is not None:
            result['rate_limit'] = self.rate_limit.to_dict()
        return result
