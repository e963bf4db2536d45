"""
Poem Translator - Utility Functions
"""
from poem_translator.utils.text_processing import (
    UnitSpec,
    normalize_text,
    detect_stanzas,
    build_unit_specs,
    clean_model_output
)
from poem_translator.utils.validators import (
    validate_file,
    validate_language,
    validate_model_name
)
from poem_translator.utils.logging import (
    LogBuffer,
    AppLogger,
    get_logger,
    debug_print
)
from poem_translator.utils.clock import now_ms

__all__ = [
    "UnitSpec",
    "normalize_text",
    "detect_stanzas",
    "build_unit_specs",
    "clean_model_output",
    "validate_file",
    "validate_language",
    "validate_model_name",
    "LogBuffer",
    "AppLogger",
    "get_logger",
    "debug_print",
    "now_ms"
]
