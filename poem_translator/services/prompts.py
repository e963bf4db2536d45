"""
Prompt Builders
===============
Prompts for the aligned (JSON) mode and the plain-text fallback mode.
"""
import json
from poem_translator.config.constants import VARIANT_COUNT
from poem_translator.models.translation import UnitContext


def _context_section(ctx: UnitContext) -> str:
    parts = []
    if ctx.prev_text:
        parts.append(f"PREVIOUS LINE: {ctx.prev_text}")
    if ctx.next_text:
        parts.append(f"NEXT LINE: {ctx.next_text}")
    if ctx.is_first:
        parts.append("This is the opening of the poem.")
    if ctx.is_last:
        parts.append("This is the closing of the poem.")
    if ctx.full_text:
        parts.append(f"FULL POEM:\n{ctx.full_text}")
    return "\n".join(parts)


def _preferences_section(ctx: UnitContext) -> str:
    if not ctx.preferences:
        return ""
    return f"TRANSLATOR PREFERENCES:\n{json.dumps(ctx.preferences, ensure_ascii=False, indent=2)}\n"


def build_aligned_prompt(ctx: UnitContext) -> str:
    """Ask for three ranked variants with word alignment as JSON."""
    source = ctx.source_language or "the source language"
    return f"""You are a literary translator of poetry. Translate the following {source} text into {ctx.target_language}.

{_context_section(ctx)}
{_preferences_section(ctx)}
TEXT TO TRANSLATE:
{ctx.source_text}

Return JSON only, shaped as:
{{"translations": [
  {{"variant": 1, "fullText": "...",
    "words": [{{"original": "...", "translation": "...", "partOfSpeech": "noun", "position": 0}}],
    "metadata": {{"literalness": 0.8, "characterCount": 0, "preservesRhyme": false, "preservesMeter": false}}}}
]}}
Provide exactly {VARIANT_COUNT} variants ranked from most literal to most free."""


def build_plain_prompt(ctx: UnitContext) -> str:
    """Fallback prompt: translations only, no alignment."""
    source = ctx.source_language or "the source language"
    return f"""Translate this {source} poetry into {ctx.target_language}.
Give {VARIANT_COUNT} alternative translations.

{ctx.source_text}

Return JSON only: {{"translations": ["first", "second", "third"]}}"""
