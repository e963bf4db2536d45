"""
Integration Tests for Flask API
===============================
Endpoints exercised through the Flask test client with an isolated
database and a fake generation provider.
"""
import io
import json

import pytest

from poem_translator.api import routes
from poem_translator.app import create_app
from poem_translator.config import config
from poem_translator.database import repositories
from poem_translator.database.connection import reset_database
from poem_translator.database.repositories import get_job_store
from poem_translator.services import jobs
from poem_translator.services.cache_service import TranslationCache
from poem_translator.services.notifier import BestEffortNotifier
from poem_translator.services.rate_limiter import MemoryCounterStore, RateLimiter
from poem_translator.services.scheduler import TickScheduler
from poem_translator.services.unit_translator import UnitTranslator
from tests.fakes import SAMPLE_POEM, FakeGenerationClient


@pytest.fixture
def provider():
    return FakeGenerationClient()


@pytest.fixture
def client(tmp_path, monkeypatch, provider):
    """Test client backed by a fresh database under tmp_path."""
    monkeypatch.setattr(config.paths, 'app_dir', str(tmp_path))
    monkeypatch.setattr(config.rate_limit, 'limit', 10)
    monkeypatch.setattr(repositories, '_job_store', None)
    monkeypatch.setattr(jobs, '_service_instance', None)
    reset_database()

    app = create_app(testing=True)

    cache = TranslationCache(str(tmp_path / 'cache.db'), ttl_seconds=3600)
    scheduler = TickScheduler(
        store=get_job_store(),
        translator=UnitTranslator(client=provider, cache=cache, model='test-model', fallback_model=''),
        rate_limiter=RateLimiter(store=MemoryCounterStore(), fail_open=True),
        notifier=BestEffortNotifier(url=''),
        concurrency=4,
        max_retries=0,
        stale_processing_seconds=120,
        call_timeout_seconds=10
    )
    monkeypatch.setattr(routes, 'get_scheduler', lambda: scheduler)
    monkeypatch.setattr(routes, 'get_cache', lambda: cache)
    monkeypatch.setattr(routes, 'get_generation_client', lambda: provider)

    with app.test_client() as client:
        yield client

    reset_database()


def create_job(client, thread_id='thread-1', user='alice', **overrides):
    body = {
        'thread_id': thread_id,
        'poem': SAMPLE_POEM,
        'source_language': 'English',
        'target_language': 'Spanish',
    }
    body.update(overrides)
    return client.post('/api/jobs', json=body, headers={'X-User-Id': user})


class TestHealthEndpoint:

    def test_healthy(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['database_connected'] is True
        assert data['version']

    def test_degraded_without_provider(self, client, provider):
        provider.healthy = False
        data = client.get('/api/health').get_json()
        assert data['status'] == 'degraded'
        assert data['provider_connected'] is False

    def test_metrics(self, client):
        create_job(client)
        data = client.get('/api/metrics').get_json()
        assert data['job_metrics']['total_units'] == 4
        assert 'cpu_percent' in data['system_metrics']


class TestModelsEndpoint:

    def test_list_models(self, client):
        data = client.get('/api/models').get_json()
        assert [m['name'] for m in data['models']] == ['test-model']

    def test_current_model(self, client):
        data = client.get('/api/models/current').get_json()
        assert data['model'] == config.provider.default_model
        assert set(data['capabilities']) == {'supports_temperature', 'supports_json_format'}


class TestCreateJob:

    def test_create_json(self, client):
        response = create_job(client)
        assert response.status_code == 201
        data = response.get_json()
        assert data['created'] is True
        assert data['status'] == 'pending'
        assert data['progress']['total'] == 4
        assert data['progress']['pending'] == 4
        assert data['job']['user_id'] == 'alice'
        assert data['job']['segment_count'] == 2

    def test_existing_thread_job_is_returned(self, client):
        first = create_job(client).get_json()
        response = create_job(client, poem='another poem')
        assert response.status_code == 200
        data = response.get_json()
        assert data['created'] is False
        assert data['job']['job_id'] == first['job']['job_id']

    def test_replace(self, client):
        first = create_job(client).get_json()
        data = create_job(client, poem='another poem', replace=True).get_json()
        assert data['created'] is True
        assert data['job']['job_id'] != first['job']['job_id']
        assert data['progress']['total'] == 1

    def test_stanza_granularity(self, client):
        data = create_job(client, granularity='stanza').get_json()
        assert data['progress']['total'] == 2

    def test_missing_fields(self, client):
        response = client.post('/api/jobs', json={'poem': SAMPLE_POEM})
        assert response.status_code == 400
        details = response.get_json()['details']
        assert 'thread_id is required' in details
        assert 'target_language is required' in details

    def test_bad_granularity(self, client):
        response = create_job(client, granularity='word')
        assert response.status_code == 400

    def test_poem_over_line_limit(self, client, monkeypatch):
        monkeypatch.setattr(config.file, 'max_poem_lines', 3)
        response = create_job(client)
        assert response.status_code == 400
        assert any('Poem too long' in d for d in response.get_json()['details'])

    def test_anonymous_subject(self, client):
        data = client.post('/api/jobs', json={
            'thread_id': 't-anon', 'poem': 'one line', 'target_language': 'French'
        }).get_json()
        assert data['job']['user_id'] == 'anonymous'

    def test_upload_text_file(self, client, tmp_path):
        response = client.post('/api/jobs', data={
            'file': (io.BytesIO(SAMPLE_POEM.encode('utf-8')), 'poem.txt'),
            'thread_id': 'thread-upload',
            'target_language': 'Spanish',
            'granularity': 'stanza',
        }, content_type='multipart/form-data')
        assert response.status_code == 201
        assert response.get_json()['progress']['total'] == 2
        assert not list(tmp_path.rglob('poem.txt'))

    def test_upload_rejects_other_types(self, client):
        response = client.post('/api/jobs', data={
            'file': (io.BytesIO(b'%PDF'), 'poem.pdf'),
            'thread_id': 'thread-upload',
            'target_language': 'Spanish',
        }, content_type='multipart/form-data')
        assert response.status_code == 400
        assert 'Invalid file type' in response.get_json()['error']

    def test_misconfigured_provider(self, client, monkeypatch):
        monkeypatch.setattr(config.provider, 'base_url', '')
        response = create_job(client)
        assert response.status_code == 503
        assert 'PROVIDER_BASE_URL' in response.get_json()['details']


class TestReadJobs:

    def test_get_job_does_not_advance(self, client, provider):
        job_id = create_job(client).get_json()['job']['job_id']
        data = client.get(f'/api/jobs/{job_id}?units=true').get_json()
        assert data['status'] == 'pending'
        assert len(data['job']['units']) == 4
        assert data['ready_units'] == []
        assert provider.calls == []

    def test_unknown_job(self, client):
        response = client.get('/api/jobs/does-not-exist')
        assert response.status_code == 404

    def test_list_jobs(self, client):
        create_job(client, thread_id='a')
        create_job(client, thread_id='b')
        data = client.get('/api/jobs?status=pending').get_json()
        assert len(data['jobs']) == 2

    def test_list_jobs_rejects_unknown_status(self, client):
        assert client.get('/api/jobs?status=sleeping').status_code == 400

    def test_thread_job(self, client):
        job_id = create_job(client, thread_id='thread-9').get_json()['job']['job_id']
        assert client.get('/api/threads/thread-9/job').get_json()['job']['job_id'] == job_id
        assert client.get('/api/threads/nothing-here/job').status_code == 404


class TestTick:

    def test_tick_completes_small_poem(self, client):
        job_id = create_job(client).get_json()['job']['job_id']

        response = client.post(f'/api/jobs/{job_id}/tick', json={}, headers={'X-User-Id': 'alice'})

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'completed'
        assert data['progress']['completed'] == 4
        assert len(data['ready_units']) == 4
        assert data['rate_limited'] is False
        assert response.headers['X-RateLimit-Limit'] == '10'
        assert 'X-RateLimit-Remaining' in response.headers
        assert 'X-RateLimit-Reset' in response.headers

    def test_rate_limited_tick(self, client, monkeypatch):
        monkeypatch.setattr(config.rate_limit, 'limit', 2)
        job_id = create_job(client).get_json()['job']['job_id']

        first = client.post(f'/api/jobs/{job_id}/tick', json={}, headers={'X-User-Id': 'alice'}).get_json()
        assert first['progress']['completed'] == 2

        response = client.post(f'/api/jobs/{job_id}/tick', json={}, headers={'X-User-Id': 'alice'})
        data = response.get_json()
        assert response.status_code == 200
        assert data['rate_limited'] is True
        assert data['status'] == 'processing'
        assert data['rate_limit']['remaining'] == 0
        assert response.headers['X-RateLimit-Remaining'] == '0'

    def test_invalid_budget(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        assert client.post(f'/api/jobs/{job_id}/tick', json={'budget_ms': 'soon'}).status_code == 400
        assert client.post(f'/api/jobs/{job_id}/tick', json={'budget_ms': -5}).status_code == 400

    def test_unknown_job(self, client):
        assert client.post('/api/jobs/nope/tick', json={}).status_code == 404


class TestRetries:

    def test_unit_retry_requires_force_when_translated(self, client, provider):
        job_id = create_job(client).get_json()['job']['job_id']
        client.post(f'/api/jobs/{job_id}/tick', json={})
        calls = len(provider.calls)

        assert client.post(f'/api/jobs/{job_id}/units/0/retry', json={}).status_code == 400

        response = client.post(f'/api/jobs/{job_id}/units/0/retry', json={'force': True})
        assert response.status_code == 200
        data = response.get_json()
        assert data['unit']['translation_status'] == 'translated'
        assert data['status'] == 'completed'
        assert len(provider.calls) == calls + 1

    def test_unknown_unit(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        assert client.post(f'/api/jobs/{job_id}/units/42/retry', json={}).status_code == 404

    def test_busy_unit(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        get_job_store().claim_unit(job_id, 1, 0)
        response = client.post(f'/api/jobs/{job_id}/units/1/retry', json={})
        assert response.status_code == 409

    def test_segment_retry(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        client.post(f'/api/jobs/{job_id}/tick', json={})

        response = client.post(f'/api/jobs/{job_id}/segments/1/retry', json={'clear_results': True})

        assert response.status_code == 200
        data = response.get_json()
        assert sorted(data['attempted']) == [2, 3]
        assert data['status'] == 'completed'

    def test_unknown_segment(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        assert client.post(f'/api/jobs/{job_id}/segments/7/retry', json={}).status_code == 400


class TestCacheAndLogs:

    def test_cache_stats_and_clear(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        client.post(f'/api/jobs/{job_id}/tick', json={})

        assert client.get('/api/cache/stats').get_json()['live_entries'] == 4
        assert client.post('/api/cache/clear').status_code == 200
        assert client.get('/api/cache/stats').get_json()['live_entries'] == 0

    def test_logs(self, client):
        response = client.get('/logs')
        assert response.status_code == 200
        assert isinstance(json.loads(response.data)['logs'], list)
        assert client.post('/logs/clear').status_code == 200

    def test_logs_for_one_job(self, client):
        job_id = create_job(client).get_json()['job']['job_id']
        client.post('/logs/clear')
        client.post(f'/api/jobs/{job_id}/tick', json={})

        logs = client.get(f'/logs?job_id={job_id}').get_json()['logs']

        assert logs
        assert all(entry['job_id'] == job_id for entry in logs)
        assert any(entry['source'] == 'SCHEDULER' for entry in logs)
