"""
Backoff Calculator
==================
Exponential retry delays with a ceiling.
"""
from typing import Optional
from poem_translator.config import config

# 2**64 ms already exceeds any sensible ceiling
_MAX_EXPONENT = 64


def delay_for_retry(retry_count: int, base_delay_ms: int = None, max_delay_ms: int = None) -> int:
    """
    Delay before the next attempt, in milliseconds.

    ``min(max_delay_ms, base_delay_ms * 2 ** retry_count)``; defaults come
    from configuration (2000 ms base, 30000 ms ceiling).
    """
    if retry_count < 0:
        raise ValueError("retry_count must be >= 0")
    base = config.backoff.base_delay_ms if base_delay_ms is None else base_delay_ms
    ceiling = config.backoff.max_delay_ms if max_delay_ms is None else max_delay_ms
    return min(ceiling, base * 2 ** min(retry_count, _MAX_EXPONENT))


def backoff_until(now: int, retry_count: int) -> int:
    """Timestamp (ms) before which a unit that failed ``retry_count`` times is ineligible."""
    return now + delay_for_retry(retry_count)


def is_eligible(now: int, until: Optional[int]) -> bool:
    """A unit may be retried once ``now >= backoff_until``; unset means immediately."""
    return until is None or now >= until
