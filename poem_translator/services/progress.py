"""
Progress Summarizer
===================
Read-side projection of a job for client polling. No side effects.
"""
from poem_translator.config.constants import UnitStatus
from poem_translator.models.job import ProgressCounts, ProgressSummary, TranslationJob

_COUNTER_FOR_STATUS = {
    UnitStatus.TRANSLATED: 'completed',
    UnitStatus.PROCESSING: 'processing',
    UnitStatus.QUEUED: 'queued',
    UnitStatus.PENDING: 'pending',
    UnitStatus.FAILED: 'failed',
}


def summarize(job: TranslationJob) -> ProgressSummary:
    """
    Counts per status plus every unit that is already translated.

    ``completed + processing + queued + pending + failed == total`` always holds.
    """
    counts = ProgressCounts()
    ready = []
    for unit in job.ordered_units():
        name = _COUNTER_FOR_STATUS[unit.status]
        setattr(counts, name, getattr(counts, name) + 1)
        if unit.status == UnitStatus.TRANSLATED:
            ready.append(unit)
    counts.total = len(job.units)

    return ProgressSummary(
        job_id=job.job_id,
        status=job.status,
        counts=counts,
        ready_units=ready
    )
