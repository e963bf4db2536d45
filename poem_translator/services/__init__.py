"""
Poem Translator - Services
"""
from poem_translator.services.generation_client import GenerationClient
from poem_translator.services.cache_service import TranslationCache
from poem_translator.services.unit_translator import UnitTranslator
from poem_translator.services.rate_limiter import RateLimiter
from poem_translator.services.scheduler import TickScheduler
from poem_translator.services.jobs import JobService
from poem_translator.services.notifier import BestEffortNotifier

__all__ = [
    "GenerationClient",
    "TranslationCache",
    "UnitTranslator",
    "RateLimiter",
    "TickScheduler",
    "JobService",
    "BestEffortNotifier"
]
