"""
Shared fixtures for the Poem Translator test suite.
"""
import os
import sys
import tempfile

# Must be set before poem_translator is imported: config is read at import time
os.environ.setdefault('POEM_TRANSLATOR_APP_DIR', tempfile.mkdtemp(prefix='poem-translator-tests-'))
os.environ.setdefault('POEM_TRANSLATOR_ENV', 'testing')
os.environ.setdefault('VERBOSE_DEBUG', 'false')
os.environ.setdefault('RATE_LIMIT_BACKEND', 'memory')
os.environ.setdefault('NOTIFY_URL', '')

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from poem_translator.database.connection import Database
from poem_translator.database.repositories import JobStateStore
from poem_translator.services.cache_service import TranslationCache
from poem_translator.services.notifier import BestEffortNotifier
from poem_translator.services.rate_limiter import MemoryCounterStore, RateLimiter
from poem_translator.services.scheduler import TickScheduler
from poem_translator.services.unit_translator import UnitTranslator
from poem_translator.utils.text_processing import build_unit_specs, detect_stanzas

from tests.fakes import SAMPLE_POEM, FakeGenerationClient


@pytest.fixture
def database(tmp_path):
    db = Database(tmp_path / 'jobs.db')
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def store(database):
    return JobStateStore(database)


@pytest.fixture
def cache(tmp_path):
    return TranslationCache(str(tmp_path / 'cache.db'), ttl_seconds=3600)


@pytest.fixture
def fake_client():
    return FakeGenerationClient()


@pytest.fixture
def translator(fake_client, cache):
    return UnitTranslator(client=fake_client, cache=cache, model='test-model', fallback_model='fallback-model')


@pytest.fixture
def limiter():
    return RateLimiter(store=MemoryCounterStore(), fail_open=True)


@pytest.fixture
def notifier():
    return BestEffortNotifier(url='')


@pytest.fixture
def scheduler(store, translator, limiter, notifier):
    return TickScheduler(
        store=store,
        translator=translator,
        rate_limiter=limiter,
        notifier=notifier,
        concurrency=4,
        max_retries=0,
        stale_processing_seconds=120,
        call_timeout_seconds=10
    )


@pytest.fixture
def make_job(store):
    """Create a job from poem text directly through the store."""
    counter = {'n': 0}

    def _make(poem: str = SAMPLE_POEM, granularity: str = 'line', thread_id: str = None,
              user_id: str = 'alice', model: str = 'test-model'):
        counter['n'] += 1
        segments = detect_stanzas(poem)
        job, _ = store.create_job(
            thread_id=thread_id or f"thread-{counter['n']}",
            user_id=user_id,
            source_text=poem,
            segments=segments,
            unit_specs=build_unit_specs(segments, granularity),
            granularity=granularity,
            source_language='English',
            target_language='Spanish',
            model=model
        )
        return job

    return _make
