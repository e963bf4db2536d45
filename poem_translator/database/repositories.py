"""
Database Repositories
=====================
The job state store: durable jobs and per-unit records with atomic patches.
"""
import json
import sqlite3
import uuid
from typing import Optional, List, Dict, Any, Tuple

from poem_translator.database.connection import Database, get_database
from poem_translator.config.constants import JobStatus, UnitStatus
from poem_translator.models.job import TranslationJob, Unit
from poem_translator.models.translation import TranslationVariant
from poem_translator.utils.clock import now_ms
from poem_translator.utils.logging import get_logger
from poem_translator.utils.text_processing import UnitSpec, build_unit_specs

# Unit fields a patch may touch, with their column encoders
_UNIT_COLUMNS = {
    'status': lambda v: UnitStatus(v).value,
    'translations': lambda v: json.dumps([
        t.to_dict() if isinstance(t, TranslationVariant) else t for t in v
    ]),
    'model_used': lambda v: v,
    'retry_count': int,
    'backoff_until': lambda v: None if v is None else int(v),
    'last_error': lambda v: v,
    'error_code': lambda v: None if v is None else str(getattr(v, 'value', v)),
    'error_history': json.dumps,
    'fallback_mode': lambda v: 1 if v else 0,
    'attempt': int,
}


def _row_to_unit(row: sqlite3.Row) -> Unit:
    return Unit(
        job_id=row['job_id'],
        unit_index=row['unit_index'],
        segment_index=row['segment_index'],
        line_number=row['line_number'],
        original_text=row['original_text'],
        status=UnitStatus(row['status']),
        translations=[TranslationVariant.from_dict(t) for t in json.loads(row['translations'] or '[]')],
        model_used=row['model_used'],
        retry_count=row['retry_count'],
        backoff_until=row['backoff_until'],
        last_error=row['last_error'],
        error_code=row['error_code'],
        error_history=json.loads(row['error_history'] or '[]'),
        fallback_mode=bool(row['fallback_mode']),
        attempt=row['attempt'],
        updated_at=row['updated_at'],
    )


def _row_to_job(row: sqlite3.Row) -> TranslationJob:
    return TranslationJob(
        job_id=row['job_id'],
        thread_id=row['thread_id'],
        user_id=row['user_id'],
        source_text=row['source_text'],
        segments=json.loads(row['segments']),
        granularity=row['granularity'],
        status=JobStatus(row['status']),
        source_language=row['source_language'] or '',
        target_language=row['target_language'] or '',
        model=row['model'] or '',
        preferences=json.loads(row['preferences'] or '{}'),
        superseded=bool(row['superseded']),
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


class JobStateStore:
    """
    Repository for translation jobs and their units.

    Units live in their own rows and every write is scoped to one unit, so
    concurrent ticks never clobber each other's results. Writes that carry
    ``expected_attempt`` are compare-and-set against the unit's claim token.
    """

    def __init__(self, database: Database = None):
        self.db = database or get_database()
        self.logger = get_logger().db_logger

    # ---- jobs ----------------------------------------------------------

    def create_job(
        self,
        thread_id: str,
        user_id: str,
        source_text: str,
        segments: List[List[str]],
        unit_specs: List[UnitSpec],
        granularity: str = "line",
        source_language: str = "",
        target_language: str = "",
        model: str = "",
        preferences: Dict[str, Any] = None,
        replace: bool = False
    ) -> Tuple[TranslationJob, bool]:
        """
        Create the job for a thread.

        Returns ``(job, created)``. An existing live job for the thread is
        returned unchanged unless ``replace`` is set, in which case it is
        marked superseded and a fresh job takes its place.
        """
        now = now_ms()
        with self.db.transaction(immediate=True) as conn:
            existing = conn.execute("""
                SELECT job_id FROM translation_jobs
                WHERE thread_id = ? AND superseded = 0
            """, (thread_id,)).fetchone()

            if existing and not replace:
                existing_id = existing['job_id']
            else:
                existing_id = None
                if existing:
                    conn.execute("""
                        UPDATE translation_jobs SET superseded = 1, updated_at = ?
                        WHERE job_id = ?
                    """, (now, existing['job_id']))
                    self.logger.info(f"Job {existing['job_id']} superseded for thread {thread_id}")

                job_id = uuid.uuid4().hex
                conn.execute("""
                    INSERT INTO translation_jobs (
                        job_id, thread_id, user_id, status, source_text, segments,
                        granularity, source_language, target_language, model,
                        preferences, superseded, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """, (
                    job_id, thread_id, user_id, JobStatus.PENDING.value, source_text,
                    json.dumps(segments), granularity, source_language, target_language,
                    model, json.dumps(preferences or {}), now, now
                ))
                conn.executemany("""
                    INSERT INTO translation_units (
                        job_id, unit_index, segment_index, line_number,
                        original_text, status, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """, [
                    (job_id, s.unit_index, s.segment_index, s.line_number,
                     s.text, UnitStatus.PENDING.value, now)
                    for s in unit_specs
                ])

        if existing_id:
            self.logger.debug(f"Returning existing job {existing_id} for thread {thread_id}")
            return self.get_job(existing_id), False

        self.logger.info(f"Created job {job_id} with {len(unit_specs)} units")
        return self.get_job(job_id), True

    def get_job(self, job_id: str) -> Optional[TranslationJob]:
        row = self.db.fetchone(
            "SELECT * FROM translation_jobs WHERE job_id = ?",
            (job_id,)
        )
        if not row:
            return None
        job = _row_to_job(row)
        job.units = {u.unit_index: u for u in self.get_units(job_id)}
        return job

    def get_job_for_thread(self, thread_id: str) -> Optional[TranslationJob]:
        """The live (not superseded) job of a thread."""
        row = self.db.fetchone("""
            SELECT job_id FROM translation_jobs
            WHERE thread_id = ? AND superseded = 0
        """, (thread_id,))
        return self.get_job(row['job_id']) if row else None

    def list_jobs(
        self,
        status: str = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[TranslationJob]:
        """Live jobs, newest first."""
        if status:
            rows = self.db.fetchall("""
                SELECT job_id FROM translation_jobs
                WHERE superseded = 0 AND status = ?
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
            """, (status, limit, offset))
        else:
            rows = self.db.fetchall("""
                SELECT job_id FROM translation_jobs
                WHERE superseded = 0
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
            """, (limit, offset))
        return [job for job in (self.get_job(r['job_id']) for r in rows) if job]

    def list_active_job_ids(self) -> List[str]:
        """Live jobs that still have work to do, least recently touched first."""
        rows = self.db.fetchall("""
            SELECT job_id FROM translation_jobs
            WHERE superseded = 0 AND status IN (?, ?)
            ORDER BY updated_at ASC
        """, (JobStatus.PENDING.value, JobStatus.PROCESSING.value))
        return [r['job_id'] for r in rows]

    def update_job_status(self, job_id: str, status: JobStatus) -> None:
        with self.db.transaction() as conn:
            conn.execute("""
                UPDATE translation_jobs SET status = ?, updated_at = ?
                WHERE job_id = ?
            """, (JobStatus(status).value, now_ms(), job_id))

    # ---- units ---------------------------------------------------------

    def get_units(self, job_id: str) -> List[Unit]:
        rows = self.db.fetchall("""
            SELECT * FROM translation_units
            WHERE job_id = ?
            ORDER BY unit_index
        """, (job_id,))
        return [_row_to_unit(r) for r in rows]

    def get_unit(self, job_id: str, unit_index: int) -> Optional[Unit]:
        row = self.db.fetchone("""
            SELECT * FROM translation_units
            WHERE job_id = ? AND unit_index = ?
        """, (job_id, unit_index))
        return _row_to_unit(row) if row else None

    def update_unit(
        self,
        job_id: str,
        unit_index: int,
        patch: Dict[str, Any],
        expected_attempt: int = None,
        allow_revert: bool = False
    ) -> bool:
        """
        Apply a patch to one unit's fields only.

        Returns False when the write was rejected: the claim token moved on
        (``expected_attempt`` mismatch) or the patch would move a translated
        unit to another status without ``allow_revert``.
        """
        unknown = set(patch) - set(_UNIT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown unit fields: {', '.join(sorted(unknown))}")

        columns = [f"{name} = ?" for name in patch] + ["updated_at = ?"]
        params = [_UNIT_COLUMNS[name](value) for name, value in patch.items()] + [now_ms()]

        where = ["job_id = ?", "unit_index = ?"]
        params += [job_id, unit_index]
        if expected_attempt is not None:
            where.append("attempt = ?")
            params.append(expected_attempt)
        new_status = patch.get('status')
        if new_status is not None and UnitStatus(new_status) != UnitStatus.TRANSLATED and not allow_revert:
            where.append("status != ?")
            params.append(UnitStatus.TRANSLATED.value)

        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE translation_units SET {', '.join(columns)} WHERE {' AND '.join(where)}",
                tuple(params)
            )
        applied = cursor.rowcount == 1
        if not applied:
            self.logger.debug(f"Rejected write to unit {unit_index} of job {job_id}")
        return applied

    def claim_unit(self, job_id: str, unit_index: int, expected_attempt: int) -> Optional[int]:
        """
        Mark a unit processing before it is dispatched.

        Succeeds only if nobody claimed or reset the unit since it was read.
        Returns the new claim token, or None if another tick got there first.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute("""
                UPDATE translation_units
                SET status = ?, attempt = attempt + 1, updated_at = ?
                WHERE job_id = ? AND unit_index = ? AND attempt = ? AND status != ?
            """, (
                UnitStatus.PROCESSING.value, now_ms(), job_id, unit_index,
                expected_attempt, UnitStatus.TRANSLATED.value
            ))
        if cursor.rowcount != 1:
            return None
        return expected_attempt + 1

    def reset_segment(self, job_id: str, segment_index: int, clear_results: bool = False) -> List[int]:
        """
        Reset every unit of a segment to pending.

        Retry counters and backoff are cleared and claim tokens advanced, so
        in-flight attempts for these units can no longer write. Translations
        are dropped only when ``clear_results`` is set.
        """
        clear_sql = ", translations = '[]', model_used = NULL, fallback_mode = 0" if clear_results else ""
        now = now_ms()
        with self.db.transaction(immediate=True) as conn:
            rows = conn.execute("""
                SELECT unit_index FROM translation_units
                WHERE job_id = ? AND segment_index = ?
                ORDER BY unit_index
            """, (job_id, segment_index)).fetchall()
            conn.execute(f"""
                UPDATE translation_units SET
                    status = ?, retry_count = 0, backoff_until = NULL,
                    last_error = NULL, error_code = NULL,
                    attempt = attempt + 1, updated_at = ?{clear_sql}
                WHERE job_id = ? AND segment_index = ?
            """, (UnitStatus.PENDING.value, now, job_id, segment_index))
            conn.execute("""
                UPDATE translation_jobs SET status = ?, updated_at = ?
                WHERE job_id = ?
            """, (JobStatus.PROCESSING.value, now, job_id))

        indices = [r['unit_index'] for r in rows]
        self.logger.info(f"Reset segment {segment_index} of job {job_id}: units {indices}")
        return indices

    def repair_units(self, job: TranslationJob) -> List[int]:
        """
        Ensure the unit set matches the job's segmentation.

        Missing units are synthesized as pending placeholders; ``job.units``
        is refreshed in place. Returns the indices that were inserted.
        """
        specs = build_unit_specs(job.segments, job.granularity)
        missing = [s for s in specs if s.unit_index not in job.units]
        if not missing:
            return []

        now = now_ms()
        with self.db.transaction() as conn:
            conn.executemany("""
                INSERT OR IGNORE INTO translation_units (
                    job_id, unit_index, segment_index, line_number,
                    original_text, status, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (job.job_id, s.unit_index, s.segment_index, s.line_number,
                 s.text, UnitStatus.PENDING.value, now)
                for s in missing
            ])

        inserted = [s.unit_index for s in missing]
        self.logger.warning(
            f"Job {job.job_id}: synthesized {len(inserted)} missing units as pending: {inserted}"
        )
        job.units = {u.unit_index: u for u in self.get_units(job.job_id)}
        return inserted

    def get_stats(self) -> Dict[str, Any]:
        """Job and unit counts by status."""
        stats = {}

        rows = self.db.fetchall("""
            SELECT status, COUNT(*) as count
            FROM translation_jobs
            WHERE superseded = 0
            GROUP BY status
        """)
        stats['jobs_by_status'] = {row['status']: row['count'] for row in rows}
        stats['total_jobs'] = sum(stats['jobs_by_status'].values())

        rows = self.db.fetchall("""
            SELECT u.status, COUNT(*) as count
            FROM translation_units u
            JOIN translation_jobs j ON j.job_id = u.job_id
            WHERE j.superseded = 0
            GROUP BY u.status
        """)
        stats['units_by_status'] = {row['status']: row['count'] for row in rows}
        stats['total_units'] = sum(stats['units_by_status'].values())

        return stats


_job_store: Optional[JobStateStore] = None


def get_job_store() -> JobStateStore:
    """Get job state store singleton."""
    global _job_store
    if _job_store is None:
        _job_store = JobStateStore()
    return _job_store
