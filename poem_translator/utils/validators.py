"""
Validation Utilities
====================
Functions for validating input data.
"""
import re
from typing import Tuple, Optional
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename
from poem_translator.config import config

MODEL_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9._:/-]+$')
LANGUAGE_PATTERN = re.compile(r'^[A-Za-z][A-Za-z \-()]{1,40}$')


def validate_file(file: FileStorage) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate an uploaded poem file.

    Args:
        file: The uploaded file

    Returns:
        Tuple of (is_valid, error_message, secure_filename)
    """
    if not file or not file.filename:
        return False, "No file provided", None

    filename = secure_filename(file.filename)
    if not filename:
        return False, "Invalid filename", None

    allowed_extensions = config.file.allowed_extensions
    if not any(filename.lower().endswith(ext) for ext in allowed_extensions):
        return False, f"Invalid file type. Allowed: {', '.join(allowed_extensions)}", None

    file.seek(0, 2)
    file_size = file.tell()
    file.seek(0)

    if file_size > config.file.max_file_size_bytes:
        return False, f"File too large. Maximum size: {config.file.max_file_size_kb}KB", None

    return True, None, filename


def validate_language(language: str) -> Tuple[bool, Optional[str]]:
    """Languages are free-form names or codes such as 'English' or 'pt-BR'."""
    if not language:
        return False, "Language is required"
    if not LANGUAGE_PATTERN.match(language):
        return False, f"Invalid language: {language}"
    return True, None


def validate_model_name(model_name: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a model name.

    Args:
        model_name: The model name to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not model_name:
        return False, "Model name is required"

    if not MODEL_NAME_PATTERN.match(model_name):
        return False, "Invalid model name format"

    return True, None


def validate_poem_text(poem: str) -> Tuple[bool, Optional[str]]:
    """A poem needs at least one non-blank line and must stay under the line limit."""
    if '\x00' in poem:
        return False, "Poem contains binary data"
    lines = [line for line in poem.splitlines() if line.strip()]
    if not lines:
        return False, "Poem has no lines to translate"
    if len(lines) > config.file.max_poem_lines:
        return False, f"Poem too long: {len(lines)} lines (maximum {config.file.max_poem_lines})"
    return True, None
