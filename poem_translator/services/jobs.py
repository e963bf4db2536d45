"""
Job Service
===========
Create and look up translation jobs.
"""
from typing import List, Optional, Tuple

from poem_translator.config import config
from poem_translator.database.repositories import JobStateStore, get_job_store
from poem_translator.exceptions import ConfigurationError, JobNotFoundError
from poem_translator.models.job import TranslationJob
from poem_translator.models.schemas import CreateJobRequest
from poem_translator.utils.logging import get_logger
from poem_translator.utils.text_processing import build_unit_specs, detect_stanzas, normalize_text
from poem_translator.utils.validators import validate_model_name


def check_provider_configuration(model: str) -> None:
    """Raise ConfigurationError if a job for ``model`` could never run."""
    provider = config.provider
    if not provider.base_url:
        raise ConfigurationError("PROVIDER_BASE_URL is not configured")
    if provider.require_api_key and not provider.api_key:
        raise ConfigurationError("PROVIDER_API_KEY is required but not set")
    if not model:
        raise ConfigurationError("No translation model configured")


def _clean_segments(segments: List[List[str]]) -> List[List[str]]:
    cleaned = [[line.strip() for line in segment if line.strip()] for segment in segments]
    return [segment for segment in cleaned if segment]


class JobService:

    def __init__(self, store: JobStateStore = None):
        self.store = store or get_job_store()
        self.logger = get_logger().app_logger

    def create_job(self, request: CreateJobRequest, user_id: str) -> Tuple[TranslationJob, bool]:
        """
        Segment a poem and create its job with every unit pending.

        Returns ``(job, created)``; see JobStateStore.create_job for the
        one-job-per-thread rule.

        Raises:
            ConfigurationError: provider settings make translation impossible
            ValueError: the poem has no lines or the model name is invalid
        """
        model = request.model or config.provider.default_model
        check_provider_configuration(model)
        valid, error = validate_model_name(model)
        if not valid:
            raise ValueError(error)

        if request.segments:
            segments = _clean_segments(request.segments)
        else:
            segments = detect_stanzas(request.poem)
        if not segments:
            raise ValueError("Poem has no lines to translate")

        granularity = request.granularity or config.scheduler.granularity
        specs = build_unit_specs(segments, granularity)
        source_text = normalize_text(request.poem) or '\n\n'.join('\n'.join(s) for s in segments)

        job, created = self.store.create_job(
            thread_id=request.thread_id,
            user_id=user_id,
            source_text=source_text,
            segments=segments,
            unit_specs=specs,
            granularity=granularity,
            source_language=request.source_language,
            target_language=request.target_language,
            model=model,
            preferences=request.preferences,
            replace=request.replace
        )
        if created:
            self.logger.info(
                f"Job {job.job_id} for thread {job.thread_id}: {len(segments)} stanzas, "
                f"{len(specs)} {granularity} units"
            )
        return job, created

    def get_job(self, job_id: str) -> TranslationJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_job_for_thread(self, thread_id: str) -> Optional[TranslationJob]:
        return self.store.get_job_for_thread(thread_id)

    def list_jobs(self, status: str = None, limit: int = 100, offset: int = 0) -> List[TranslationJob]:
        return self.store.list_jobs(status=status, limit=limit, offset=offset)


_service_instance: Optional[JobService] = None


def get_job_service() -> JobService:
    global _service_instance
    if _service_instance is None:
        _service_instance = JobService()
    return _service_instance
