"""
Poem Translator - line-by-line AI poem translation jobs
=======================================================
This package provides a Flask-based service that translates poems one unit
(a line or a stanza) at a time with an LLM provider:
1. Each unit gets three ranked variants with word-level alignment
2. Jobs advance in bounded ticks, driven by client polling or a worker

Version: 1.0.0
"""

__version__ = "1.0.0"

from poem_translator.app import create_app, run_server

__all__ = ["create_app", "run_server", "__version__"]
