"""
Poem Translator - API Routes
"""
from poem_translator.api.routes import (
    create_jobs_blueprint,
    create_models_blueprint,
    create_health_blueprint,
    create_logs_blueprint
)

__all__ = [
    "create_jobs_blueprint",
    "create_models_blueprint",
    "create_health_blueprint",
    "create_logs_blueprint"
]
