"""
Poem Translator - Data Models
"""
from poem_translator.models.translation import (
    AlignedWord,
    VariantMetadata,
    TranslationVariant,
    UnitContext,
    TranslationResult,
    TranslationFailure
)
from poem_translator.models.job import (
    Unit,
    TranslationJob,
    RateLimitDecision,
    ProgressCounts,
    ProgressSummary,
    TickResult,
    UnitRetryResult
)
from poem_translator.models.schemas import (
    CreateJobRequest,
    TickRequest,
    UnitRetryRequest,
    SegmentRetryRequest,
    ModelInfo,
    HealthStatus
)

__all__ = [
    "AlignedWord",
    "VariantMetadata",
    "TranslationVariant",
    "UnitContext",
    "TranslationResult",
    "TranslationFailure",
    "Unit",
    "TranslationJob",
    "RateLimitDecision",
    "ProgressCounts",
    "ProgressSummary",
    "TickResult",
    "UnitRetryResult",
    "CreateJobRequest",
    "TickRequest",
    "UnitRetryRequest",
    "SegmentRetryRequest",
    "ModelInfo",
    "HealthStatus"
]
