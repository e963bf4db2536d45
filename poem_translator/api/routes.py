"""
API Routes
==========
Flask blueprints for all API endpoints.
"""
import json
import time
from dataclasses import asdict
from flask import Blueprint, request, jsonify, Response, g

from poem_translator import __version__
from poem_translator.config import config, get_model_capabilities
from poem_translator.config.constants import JobStatus
from poem_translator.database.connection import get_database
from poem_translator.database.repositories import get_job_store
from poem_translator.models.schemas import (
    CreateJobRequest,
    HealthStatus,
    SegmentRetryRequest,
    TickRequest,
    UnitRetryRequest,
)
from poem_translator.services.cache_service import get_cache
from poem_translator.services.generation_client import get_generation_client
from poem_translator.services.jobs import get_job_service
from poem_translator.services.progress import summarize
from poem_translator.services.scheduler import get_scheduler
from poem_translator.utils.logging import get_logger, log_buffer
from poem_translator.utils.validators import validate_file, validate_language, validate_poem_text
from poem_translator.api.middleware import with_subject, record_rate_limit


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _create_request_from_upload() -> CreateJobRequest:
    """Build a job request from a multipart form with a .txt poem file."""
    file = request.files['file']
    is_valid, error, _ = validate_file(file)
    if not is_valid:
        raise ValueError(error)

    try:
        poem = file.stream.read().decode('utf-8')
    except UnicodeDecodeError:
        raise ValueError("Poem file must be UTF-8 text")

    data = request.form.to_dict()
    data['poem'] = poem
    if 'preferences' in data:
        try:
            data['preferences'] = json.loads(data['preferences'])
        except json.JSONDecodeError:
            raise ValueError("preferences must be a JSON object")
    return CreateJobRequest.from_dict(data)


def create_jobs_blueprint() -> Blueprint:
    """Create job routes blueprint."""
    bp = Blueprint('jobs', __name__, url_prefix='/api')
    logger = get_logger().api_logger

    @bp.route('/jobs', methods=['POST'])
    @with_subject
    def create_job():
        """Create (or return the existing) job for a thread."""
        try:
            if 'file' in request.files:
                job_request = _create_request_from_upload()
            else:
                job_request = CreateJobRequest.from_dict(_json_body())
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        errors = job_request.validate()
        if job_request.poem.strip():
            is_valid, error = validate_poem_text(job_request.poem)
            if not is_valid:
                errors.append(error)
        for language in filter(None, (job_request.source_language, job_request.target_language)):
            is_valid, error = validate_language(language)
            if not is_valid:
                errors.append(error)
        if errors:
            return jsonify({'error': 'Invalid request', 'details': errors}), 400

        try:
            job, created = get_job_service().create_job(job_request, g.user_id)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        if created:
            logger.info(f"Job {job.job_id} created for thread {job.thread_id} by {g.user_id}")
        payload = summarize(job).to_dict()
        payload.update({'created': created, 'job': job.to_dict()})
        return jsonify(payload), 201 if created else 200

    @bp.route('/jobs', methods=['GET'])
    def list_jobs():
        """List live jobs."""
        status = request.args.get('status')
        if status and status not in {s.value for s in JobStatus}:
            return jsonify({'error': f'Unknown status: {status}'}), 400
        limit = request.args.get('limit', 100, type=int)
        offset = request.args.get('offset', 0, type=int)

        jobs = get_job_service().list_jobs(status=status, limit=limit, offset=offset)
        return jsonify({'jobs': [job.to_dict() for job in jobs]})

    @bp.route('/jobs/<job_id>', methods=['GET'])
    def get_job(job_id: str):
        """Progress summary; never advances the job."""
        job = get_job_service().get_job(job_id)
        payload = summarize(job).to_dict()
        payload['job'] = job.to_dict(include_units=request.args.get('units') == 'true')
        return jsonify(payload)

    @bp.route('/jobs/<job_id>/tick', methods=['POST'])
    @with_subject
    def tick_job(job_id: str):
        """Advance the job by one bounded tick."""
        try:
            tick_request = TickRequest.from_dict(_json_body())
        except (TypeError, ValueError):
            return jsonify({'error': 'budget_ms must be an integer'}), 400
        errors = tick_request.validate()
        if errors:
            return jsonify({'error': 'Invalid request', 'details': errors}), 400

        result = get_scheduler().run_tick(job_id, budget_ms=tick_request.budget_ms, user_id=g.user_id)
        record_rate_limit(result.rate_limit)
        return jsonify(result.to_dict())

    @bp.route('/jobs/<job_id>/units/<int:unit_index>/retry', methods=['POST'])
    @with_subject
    def retry_unit(job_id: str, unit_index: int):
        """Retry one unit now, ignoring its backoff."""
        retry_request = UnitRetryRequest.from_dict(_json_body())
        result = get_scheduler().retry_unit(
            job_id, unit_index, force=retry_request.force, user_id=g.user_id
        )
        record_rate_limit(result.rate_limit)
        return jsonify(result.to_dict())

    @bp.route('/jobs/<job_id>/segments/<int:segment_index>/retry', methods=['POST'])
    @with_subject
    def retry_segment(job_id: str, segment_index: int):
        """Reset a whole stanza and tick immediately."""
        try:
            retry_request = SegmentRetryRequest.from_dict(_json_body())
        except (TypeError, ValueError):
            return jsonify({'error': 'budget_ms must be an integer'}), 400
        errors = retry_request.validate()
        if errors:
            return jsonify({'error': 'Invalid request', 'details': errors}), 400

        result = get_scheduler().retry_segment(
            job_id,
            segment_index,
            clear_results=retry_request.clear_results,
            budget_ms=retry_request.budget_ms,
            user_id=g.user_id
        )
        record_rate_limit(result.rate_limit)
        return jsonify(result.to_dict())

    @bp.route('/threads/<thread_id>/job', methods=['GET'])
    def get_thread_job(thread_id: str):
        """Current job of a thread."""
        job = get_job_service().get_job_for_thread(thread_id)
        if job is None:
            return jsonify({'error': f'No job for thread {thread_id}'}), 404
        payload = summarize(job).to_dict()
        payload['job'] = job.to_dict()
        return jsonify(payload)

    return bp


def create_models_blueprint() -> Blueprint:
    """Create models routes blueprint."""
    bp = Blueprint('models', __name__, url_prefix='/api')

    @bp.route('/models', methods=['GET'])
    def list_models():
        """List models the provider advertises."""
        models = get_generation_client().list_models()
        return jsonify({'models': [m.to_dict() for m in models]})

    @bp.route('/models/current', methods=['GET'])
    def get_current_model():
        """Default and fallback model with the default's capabilities."""
        model = config.provider.default_model
        return jsonify({
            'model': model,
            'fallback_model': config.provider.fallback_model,
            'capabilities': asdict(get_model_capabilities(model))
        })

    return bp


def create_health_blueprint() -> Blueprint:
    """Create health check routes blueprint."""
    bp = Blueprint('health', __name__, url_prefix='/api')

    @bp.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        provider_connected = get_generation_client().is_healthy()
        database_connected = get_database().ping()

        health = HealthStatus(
            status='healthy' if provider_connected and database_connected else 'degraded',
            provider_connected=provider_connected,
            database_connected=database_connected,
            version=__version__
        )
        return jsonify(health.to_dict())

    @bp.route('/metrics', methods=['GET'])
    def get_metrics():
        """Get application metrics."""
        import psutil

        stats = get_job_store().get_stats()
        system_metrics = {
            'cpu_percent': psutil.cpu_percent(interval=None),
            'memory_percent': psutil.virtual_memory().percent,
            'disk_usage': psutil.disk_usage(config.paths.app_dir).percent,
            'uptime': time.time() - psutil.boot_time()
        }
        return jsonify({
            'job_metrics': stats,
            'system_metrics': system_metrics
        })

    @bp.route('/cache/stats', methods=['GET'])
    def cache_stats():
        """Get cache statistics."""
        return jsonify(get_cache().get_stats())

    @bp.route('/cache/clear', methods=['POST'])
    def clear_cache():
        """Clear the translation cache."""
        get_cache().clear()
        return jsonify({'message': 'Cache cleared'})

    return bp


def create_logs_blueprint() -> Blueprint:
    """Create logs routes blueprint for the frontend console panel."""
    bp = Blueprint('logs', __name__)

    @bp.route('/logs', methods=['GET'])
    def get_logs():
        """Get logs from the in-memory buffer."""
        since_id = request.args.get('since', 0, type=int)
        job_id = request.args.get('job_id') or None
        return jsonify({'logs': log_buffer.get_since(since_id, job_id)})

    @bp.route('/logs/stream')
    def stream_logs():
        """Stream logs in real time using Server-Sent Events."""
        since_id = request.args.get('since', 0, type=int)
        job_id = request.args.get('job_id') or None

        def generate():
            last_id = since_id
            while True:
                for entry in log_buffer.get_since(last_id, job_id):
                    last_id = entry['id']
                    yield f"data: {json.dumps(entry)}\n\n"
                time.sleep(0.5)

        return Response(
            generate(),
            mimetype='text/event-stream',
            headers={
                'Cache-Control': 'no-cache',
                'Connection': 'keep-alive'
            }
        )

    @bp.route('/logs/clear', methods=['POST'])
    def clear_logs():
        """Clear the log buffer."""
        log_buffer.clear()
        return jsonify({'message': 'Logs cleared'})

    return bp
