"""
Tests for the job state store.
"""
import sqlite3
import time

import pytest

from poem_translator.config.constants import JobStatus, UnitStatus
from poem_translator.models.translation import TranslationVariant
from poem_translator.services.cache_service import TranslationCache
from poem_translator.utils.text_processing import build_unit_specs


def variants():
    return [TranslationVariant(variant=n, full_text=f"v{n}") for n in (1, 2, 3)]


class TestCreateJob:

    def test_units_start_pending(self, make_job):
        job = make_job()
        assert job.status == JobStatus.PENDING
        assert job.total_units == 4
        assert all(u.status == UnitStatus.PENDING for u in job.units.values())
        assert job.units[2].original_text == 'The night is long'
        assert job.units[2].segment_index == 1

    def test_stanza_granularity(self, make_job):
        job = make_job(granularity='stanza')
        assert job.total_units == 2
        assert job.units[0].original_text == 'The moon is down\nThe stars are out'

    def test_existing_job_is_returned_for_thread(self, store, make_job):
        job = make_job(thread_id='t-1')
        again, created = store.create_job(
            thread_id='t-1', user_id='alice', source_text='other', segments=[['other']],
            unit_specs=[], granularity='line'
        )
        assert not created
        assert again.job_id == job.job_id

    def test_replace_supersedes_old_job(self, store, make_job):
        old = make_job(thread_id='t-1')
        new = make_job(poem='just one line', thread_id='t-1')
        assert new.job_id == old.job_id

        segments = [["fresh line"]]
        replaced, created = store.create_job(
            thread_id='t-1', user_id='alice', source_text='fresh line', segments=segments,
            unit_specs=build_unit_specs(segments, 'line'), replace=True
        )
        assert created
        assert replaced.job_id != old.job_id
        assert store.get_job(old.job_id).superseded
        assert store.get_job_for_thread('t-1').job_id == replaced.job_id
        assert [j.job_id for j in store.list_jobs()] == [replaced.job_id]

    def test_missing_job(self, store):
        assert store.get_job('nope') is None


class TestUpdateUnit:

    def test_patch_touches_one_unit_only(self, store, make_job):
        job = make_job()
        assert store.update_unit(job.job_id, 1, {'status': UnitStatus.FAILED, 'retry_count': 1,
                                                 'last_error': 'boom'})
        units = store.get_job(job.job_id).units
        assert units[1].status == UnitStatus.FAILED
        assert units[1].last_error == 'boom'
        assert all(units[i].status == UnitStatus.PENDING for i in (0, 2, 3))

    def test_unknown_field_rejected(self, store, make_job):
        job = make_job()
        with pytest.raises(ValueError):
            store.update_unit(job.job_id, 0, {'original_text': 'rewritten'})

    def test_translated_unit_is_not_reverted_by_stale_write(self, store, make_job):
        job = make_job()
        store.update_unit(job.job_id, 0, {'status': UnitStatus.TRANSLATED, 'translations': variants()})
        assert not store.update_unit(job.job_id, 0, {'status': UnitStatus.PENDING})
        unit = store.get_unit(job.job_id, 0)
        assert unit.status == UnitStatus.TRANSLATED
        assert [v.full_text for v in unit.translations] == ['v1', 'v2', 'v3']

    def test_allow_revert(self, store, make_job):
        job = make_job()
        store.update_unit(job.job_id, 0, {'status': UnitStatus.TRANSLATED, 'translations': variants()})
        assert store.update_unit(job.job_id, 0, {'status': UnitStatus.QUEUED}, allow_revert=True)
        assert store.get_unit(job.job_id, 0).status == UnitStatus.QUEUED

    def test_compare_and_set_on_claim_token(self, store, make_job):
        job = make_job()
        assert not store.update_unit(job.job_id, 0, {'last_error': 'x'}, expected_attempt=5)
        assert store.update_unit(job.job_id, 0, {'last_error': 'x'}, expected_attempt=0)


class TestClaimUnit:

    def test_claim_marks_processing_and_advances_token(self, store, make_job):
        job = make_job()
        token = store.claim_unit(job.job_id, 0, expected_attempt=0)
        assert token == 1
        unit = store.get_unit(job.job_id, 0)
        assert unit.status == UnitStatus.PROCESSING
        assert unit.attempt == 1

    def test_second_claim_with_same_token_loses(self, store, make_job):
        job = make_job()
        assert store.claim_unit(job.job_id, 0, expected_attempt=0) == 1
        assert store.claim_unit(job.job_id, 0, expected_attempt=0) is None

    def test_translated_unit_cannot_be_claimed(self, store, make_job):
        job = make_job()
        store.update_unit(job.job_id, 0, {'status': UnitStatus.TRANSLATED, 'translations': variants()})
        assert store.claim_unit(job.job_id, 0, expected_attempt=0) is None

    def test_stale_result_write_is_discarded_after_reset(self, store, make_job):
        job = make_job()
        token = store.claim_unit(job.job_id, 0, expected_attempt=0)
        store.reset_segment(job.job_id, 0)
        assert not store.update_unit(job.job_id, 0, {'status': UnitStatus.TRANSLATED,
                                                     'translations': variants()},
                                     expected_attempt=token)
        assert store.get_unit(job.job_id, 0).status == UnitStatus.PENDING


class TestResetSegment:

    def test_resets_only_that_segment(self, store, make_job):
        job = make_job()
        for i in range(4):
            store.update_unit(job.job_id, i, {'status': UnitStatus.FAILED, 'retry_count': 2,
                                              'backoff_until': 10 ** 13, 'last_error': 'e'})
        indices = store.reset_segment(job.job_id, 1)

        assert indices == [2, 3]
        units = store.get_job(job.job_id).units
        assert units[2].status == UnitStatus.PENDING
        assert units[2].retry_count == 0
        assert units[2].backoff_until is None
        assert units[0].status == UnitStatus.FAILED
        assert store.get_job(job.job_id).status == JobStatus.PROCESSING

    def test_clear_results(self, store, make_job):
        job = make_job()
        store.update_unit(job.job_id, 0, {'status': UnitStatus.TRANSLATED, 'translations': variants(),
                                          'model_used': 'm'})
        store.reset_segment(job.job_id, 0, clear_results=True)
        unit = store.get_unit(job.job_id, 0)
        assert unit.translations == []
        assert unit.model_used is None

    def test_keeps_results_without_clear(self, store, make_job):
        job = make_job()
        store.update_unit(job.job_id, 0, {'status': UnitStatus.TRANSLATED, 'translations': variants()})
        store.reset_segment(job.job_id, 0)
        unit = store.get_unit(job.job_id, 0)
        assert unit.status == UnitStatus.PENDING
        assert len(unit.translations) == 3


class TestRepairUnits:

    def test_missing_units_are_synthesized_pending(self, store, database, make_job):
        job = make_job()
        with database.transaction() as conn:
            conn.execute("DELETE FROM translation_units WHERE job_id = ? AND unit_index IN (1, 3)",
                         (job.job_id,))
        job = store.get_job(job.job_id)
        assert job.total_units == 2

        inserted = store.repair_units(job)

        assert inserted == [1, 3]
        assert job.total_units == 4
        assert job.units[3].original_text == 'The road is cold'
        assert job.units[3].status == UnitStatus.PENDING

    def test_complete_job_needs_no_repair(self, store, make_job):
        job = make_job()
        assert store.repair_units(job) == []


class TestStats:

    def test_counts(self, store, make_job):
        make_job()
        make_job(poem='single line')
        stats = store.get_stats()
        assert stats['total_jobs'] == 2
        assert stats['total_units'] == 5
        assert stats['units_by_status'] == {'pending': 5}
        assert sorted(store.list_active_job_ids()) == sorted(j.job_id for j in store.list_jobs())


class TestTranslationCache:

    def test_set_get_invalidate(self, cache):
        cache.set('job', 0, 'm', {'variants': [1]})
        cache.set('job', 1, 'm', {'variants': [2]})
        assert cache.get('job', 0, 'm') == {'variants': [1]}
        assert cache.get('job', 0, 'other-model') is None
        assert cache.invalidate('job', [0]) == 1
        assert cache.get('job', 0, 'm') is None
        assert cache.get('job', 1, 'm') is not None

    def test_expired_entries_are_misses(self, tmp_path):
        cache = TranslationCache(str(tmp_path / 'cache.db'), ttl_seconds=0)
        cache.set('job', 0, 'm', {'variants': [1]})
        assert cache.get('job', 0, 'm') is None
        assert cache.get_stats()['total_entries'] == 1
        cache.cleanup()
        assert cache.get_stats()['total_entries'] == 0

    def test_cleanup_drops_entries_past_max_age(self, cache):
        cache.set('job', 0, 'm', {'variants': [1]})
        cache.set('job', 1, 'm', {'variants': [2]})
        with sqlite3.connect(cache.db_path) as conn:
            conn.execute(
                "UPDATE unit_translation_cache SET created_at = ? WHERE unit_index = 0",
                (time.time() - 3 * 86400,)
            )

        assert cache.cleanup(days=2) == 1
        assert cache.get('job', 0, 'm') is None
        assert cache.get('job', 1, 'm') == {'variants': [2]}

    def test_clear(self, cache):
        cache.set('job', 0, 'm', {'variants': [1]})
        cache.clear()
        assert cache.get_stats()['live_entries'] == 0
