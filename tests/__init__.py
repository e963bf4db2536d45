"""
Poem Translator - Test Suite
============================
Run with: pytest tests/ -v
"""
