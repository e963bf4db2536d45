"""
Poem Translator Application
===========================
Flask application factory and server entry point.
"""
from flask import Flask
from flask_cors import CORS

from poem_translator.config import config
from poem_translator.database.connection import get_database
from poem_translator.exceptions import (
    ConfigurationError,
    InvalidRetryError,
    JobNotFoundError,
    UnitBusyError,
    UnitNotFoundError,
)
from poem_translator.api.routes import (
    create_jobs_blueprint,
    create_models_blueprint,
    create_health_blueprint,
    create_logs_blueprint
)
from poem_translator.api.middleware import add_rate_limit_headers, log_request, start_request_timer
from poem_translator.utils.logging import get_logger, debug_print


def create_app(testing: bool = False) -> Flask:
    """
    Application factory for Flask app.

    Args:
        testing: If True, configure for testing

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    app.config.update(
        SECRET_KEY=config.server.secret_key,
        MAX_CONTENT_LENGTH=config.file.max_file_size_bytes,
        TESTING=testing
    )
    app.json.sort_keys = False

    cors_origins = config.server.cors_origins
    if testing:
        cors_origins = ['*']

    CORS(
        app,
        resources={r"/api/*": {"origins": cors_origins}},
        supports_credentials=True
    )

    get_database()

    app.register_blueprint(create_jobs_blueprint())
    app.register_blueprint(create_models_blueprint())
    app.register_blueprint(create_health_blueprint())
    app.register_blueprint(create_logs_blueprint())

    app.before_request(start_request_timer)
    app.after_request(add_rate_limit_headers)
    app.after_request(log_request)

    logger = get_logger().api_logger

    @app.errorhandler(ConfigurationError)
    def misconfigured(e):
        logger.error(f"Configuration error: {e}")
        return {'error': 'Service misconfigured', 'details': str(e)}, 503

    @app.errorhandler(JobNotFoundError)
    @app.errorhandler(UnitNotFoundError)
    def missing_resource(e):
        return {'error': str(e)}, 404

    @app.errorhandler(InvalidRetryError)
    def invalid_retry(e):
        return {'error': str(e)}, 400

    @app.errorhandler(UnitBusyError)
    def unit_busy(e):
        return {'error': str(e)}, 409

    @app.errorhandler(400)
    def bad_request(e):
        return {'error': 'Bad request', 'details': str(e)}, 400

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Resource not found'}, 404

    @app.errorhandler(413)
    def file_too_large(e):
        return {'error': f'File too large. Maximum size is {config.file.max_file_size_kb}KB'}, 413

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal error: {e}")
        return {'error': 'Internal server error'}, 500

    get_logger().app_logger.info(
        f"Poem Translator configured for {config.server.host}:{config.server.port} "
        f"({config.environment})"
    )
    if config.logging.verbose_debug:
        debug_print("Application initialized", 'INFO', 'APP')

    return app


def run_server():
    """Run the Flask development server."""
    app = create_app()

    print(f"""
==============================================================
  Poem Translator
--------------------------------------------------------------
  Server:      http://{config.server.host}:{config.server.port}
  Provider:    {config.provider.base_url}
  Model:       {config.provider.default_model} (fallback: {config.provider.fallback_model or 'none'})
  Granularity: {config.scheduler.granularity}
  Debug:       {'Enabled' if config.logging.verbose_debug else 'Disabled'}
==============================================================
    """)

    app.run(
        host=config.server.host,
        port=config.server.port,
        debug=config.server.debug,
        threaded=True
    )


if __name__ == '__main__':
    run_server()
