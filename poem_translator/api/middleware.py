"""
API Middleware
==============
Request subject resolution, rate limit headers, and request logging.
"""
import re
import time
from functools import wraps
from typing import Callable, Optional
from flask import request, g

from poem_translator.config import config
from poem_translator.models.job import RateLimitDecision
from poem_translator.utils.logging import get_logger

ANONYMOUS_USER = 'anonymous'
_USER_ID_PATTERN = re.compile(r'^[A-Za-z0-9._@:-]{1,128}$')


def get_subject_id() -> str:
    """
    User id of the current request.

    Authentication happens upstream; this only trusts the X-User-Id header
    it forwards, falling back to the anonymous subject.
    """
    user_id = (request.headers.get('X-User-Id') or '').strip()
    if not user_id or not _USER_ID_PATTERN.match(user_id):
        return ANONYMOUS_USER
    return user_id


def with_subject(f: Callable) -> Callable:
    """Resolve the requesting user into ``g.user_id``."""
    @wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = get_subject_id()
        return f(*args, **kwargs)

    return decorated


def record_rate_limit(decision: Optional[RateLimitDecision]) -> None:
    """Remember a rate limit decision so the response carries its headers."""
    if decision is None:
        return
    g.rate_limit_info = {
        'limit': config.rate_limit.limit,
        'remaining': decision.remaining,
        'reset': decision.reset_at
    }


def add_rate_limit_headers(response):
    """Add rate limit headers to response."""
    info = getattr(g, 'rate_limit_info', None)
    if info:
        response.headers['X-RateLimit-Limit'] = str(info['limit'])
        response.headers['X-RateLimit-Remaining'] = str(info['remaining'])
        response.headers['X-RateLimit-Reset'] = str(info['reset'])
    return response


def start_request_timer():
    g.request_started = time.monotonic()


def log_request(response):
    """Log method, path, status and duration of API requests."""
    started = getattr(g, 'request_started', None)
    if started is not None and request.path.startswith('/api/'):
        elapsed_ms = int((time.monotonic() - started) * 1000)
        get_logger().api_logger.info(
            f"{request.method} {request.path} -> {response.status_code} ({elapsed_ms}ms)"
        )
    return response
