"""
Exceptions
==========
Typed errors raised by the poem translator services.
"""
from typing import Optional

from poem_translator.config.constants import ErrorCode


class PoemTranslatorError(Exception):
    """Base class for all poem translator errors."""


class ConfigurationError(PoemTranslatorError):
    """Provider or service misconfiguration; fatal at job creation."""


class JobNotFoundError(PoemTranslatorError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class UnitNotFoundError(PoemTranslatorError):
    def __init__(self, job_id: str, unit_index: int):
        super().__init__(f"Unit {unit_index} not found in job {job_id}")
        self.job_id = job_id
        self.unit_index = unit_index


class InvalidRetryError(PoemTranslatorError):
    """A retry request that cannot be honored as asked."""


class UnitBusyError(PoemTranslatorError):
    """The unit is being translated by another tick."""


class GenerationError(PoemTranslatorError):
    """
    The external generation call failed or returned unusable content.

    Never escapes the unit translator; it is turned into a TranslationFailure.
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN,
                 retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.status_code = status_code


class CounterStoreUnavailable(PoemTranslatorError):
    """The rate-limit counter store could not be reached."""
