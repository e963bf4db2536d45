"""
Constants and Enums for Poem Translator
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict

# Every successful unit carries exactly this many variants
VARIANT_COUNT = 3

# Error history entries kept per unit
ERROR_HISTORY_LIMIT = 10


class JobStatus(str, Enum):
    """Status of a translation job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UnitStatus(str, Enum):
    """Status of a single translation unit."""
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    TRANSLATED = "translated"
    FAILED = "failed"


class ErrorCode(str, Enum):
    """Classified failure codes recorded on units."""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    MODEL_NOT_FOUND = "model_not_found"
    VALIDATION_ERROR = "validation_error"
    AUTH_ERROR = "auth_error"
    UNKNOWN = "unknown"


class FailureKind(str, Enum):
    """Kinds of unit failures."""
    GENERATION_ERROR = "GenerationError"


class Granularity(str, Enum):
    """How a poem is split into units."""
    LINE = "line"
    STANZA = "stanza"


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ModelCapabilities:
    """Request options a model accepts."""
    supports_temperature: bool = True
    supports_json_format: bool = True


DEFAULT_CAPABILITIES = ModelCapabilities()

# Keyed by exact model id; unknown models get DEFAULT_CAPABILITIES
MODEL_CAPABILITIES: Dict[str, ModelCapabilities] = {
    'llama3.1:8b': ModelCapabilities(),
    'llama3.2:3b': ModelCapabilities(),
    'qwen2.5:7b': ModelCapabilities(),
    'mistral:7b': ModelCapabilities(),
    'gemma2:9b': ModelCapabilities(),
    'deepseek-r1:8b': ModelCapabilities(supports_temperature=True, supports_json_format=False),
    'gpt-5': ModelCapabilities(supports_temperature=False, supports_json_format=True),
    'gpt-5-mini': ModelCapabilities(supports_temperature=False, supports_json_format=True),
    'o3-mini': ModelCapabilities(supports_temperature=False, supports_json_format=True),
}


def get_model_capabilities(model: str) -> ModelCapabilities:
    """Return the capability record for a model id."""
    return MODEL_CAPABILITIES.get(model or '', DEFAULT_CAPABILITIES)
