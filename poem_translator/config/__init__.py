"""
Poem Translator - Configuration Module
"""
from poem_translator.config.settings import Config, config
from poem_translator.config.constants import (
    VARIANT_COUNT,
    JobStatus,
    UnitStatus,
    ErrorCode,
    FailureKind,
    Granularity,
    LogLevel,
    get_model_capabilities,
)

__all__ = [
    "Config",
    "config",
    "VARIANT_COUNT",
    "JobStatus",
    "UnitStatus",
    "ErrorCode",
    "FailureKind",
    "Granularity",
    "LogLevel",
    "get_model_capabilities",
]
