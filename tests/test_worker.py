"""
Tests for the background worker and the best-effort notifier.
"""
from unittest.mock import Mock

import requests

from poem_translator.config.constants import JobStatus
from poem_translator.exceptions import JobNotFoundError
from poem_translator.services.notifier import BestEffortNotifier
from poem_translator.worker import TranslationWorker


class TestTranslationWorker:

    def test_run_once_ticks_active_jobs(self, scheduler, store, make_job):
        first = make_job()
        second = make_job(poem='one line only')
        worker = TranslationWorker(scheduler=scheduler, store=store, budget_ms=5000, poll_interval=0)

        results = worker.run_once()

        assert sorted(r.job_id for r in results) == sorted([first.job_id, second.job_id])
        assert all(r.status == JobStatus.COMPLETED for r in results)
        assert store.list_active_job_ids() == []

    def test_uses_worker_budget(self):
        scheduler = Mock()
        store = Mock()
        store.list_active_job_ids.return_value = ['job-a']
        worker = TranslationWorker(scheduler=scheduler, store=store, budget_ms=20000, poll_interval=0)

        worker.run_once()

        scheduler.run_tick.assert_called_once_with('job-a', budget_ms=20000)

    def test_one_failing_job_does_not_stop_the_others(self):
        scheduler = Mock()
        scheduler.run_tick.side_effect = [JobNotFoundError('gone'), RuntimeError('boom'), Mock()]
        store = Mock()
        store.list_active_job_ids.return_value = ['a', 'b', 'c']
        worker = TranslationWorker(scheduler=scheduler, store=store, budget_ms=1000, poll_interval=0)
        worker.logger = Mock()

        results = worker.run_once()

        assert len(results) == 1
        assert scheduler.run_tick.call_count == 3
        worker.logger.exception.assert_called_once()

    def test_stop_ends_the_loop(self):
        store = Mock()
        store.list_active_job_ids.return_value = []
        worker = TranslationWorker(scheduler=Mock(), store=store, budget_ms=1000, poll_interval=0.01)
        store.list_active_job_ids.side_effect = lambda: worker.stop() or []

        worker.run_forever()

        assert store.list_active_job_ids.call_count == 1

    def test_cache_cleanup_runs_once_per_interval(self):
        cache = Mock()
        cache.cleanup.return_value = 3
        worker = TranslationWorker(scheduler=Mock(), store=Mock(), poll_interval=0,
                                   cache=cache, cleanup_interval_seconds=3600)

        assert worker.cleanup_cache_if_due()
        assert not worker.cleanup_cache_if_due()
        cache.cleanup.assert_called_once_with()

    def test_loop_prunes_cache(self, cache):
        cache.set('job', 0, 'm', {'variants': [1]})
        cache.ttl_seconds = 0
        cache.set('job', 1, 'm', {'variants': [2]})
        store = Mock()
        worker = TranslationWorker(scheduler=Mock(), store=store, poll_interval=0.01, cache=cache)
        store.list_active_job_ids.side_effect = lambda: worker.stop() or []

        worker.run_forever()

        assert cache.get_stats()['total_entries'] == 1


class TestBestEffortNotifier:

    def test_disabled_without_url(self):
        notifier = BestEffortNotifier(url='')
        assert not notifier.enabled
        assert notifier.notify('job.completed', {'job_id': 'j'}) is None

    def test_posts_event(self):
        session = Mock()
        session.post.return_value = Mock(status_code=204)
        notifier = BestEffortNotifier(url='http://hooks.local/poems', timeout=1, session=session)

        notifier.notify('job.completed', {'job_id': 'j'}).join(timeout=2)

        session.post.assert_called_once_with(
            'http://hooks.local/poems', json={'event': 'job.completed', 'job_id': 'j'}, timeout=1
        )

    def test_failures_are_logged_and_dropped(self):
        session = Mock()
        session.post.side_effect = requests.ConnectionError('refused')
        notifier = BestEffortNotifier(url='http://hooks.local/poems', timeout=1, session=session)
        notifier.logger = Mock()

        notifier.notify('unit.translated', {'job_id': 'j'}).join(timeout=2)

        notifier.logger.warning.assert_called_once()
        assert 'dropped' in notifier.logger.warning.call_args.args[0]
