"""
Text Processing Utilities
=========================
Poem segmentation and model output cleanup.
"""
import re
from dataclasses import dataclass
from typing import List, Optional
from poem_translator.config.constants import Granularity
from poem_translator.utils.logging import debug_print

STANZA_BREAK = re.compile(r'\n\s*\n\s*')

THINKING_TAGS = ('think', 'thinking', 'reasoning', 'reflection')


@dataclass
class UnitSpec:
    """Position and source text of one unit before it is persisted."""
    unit_index: int
    segment_index: int
    line_number: int
    text: str


def normalize_text(text: str) -> str:
    """
    Normalize line endings and strip surrounding whitespace.

    Args:
        text: Text to normalize

    Returns:
        Normalized text
    """
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    return text.strip()


def detect_stanzas(poem: str) -> List[List[str]]:
    """
    Split a poem into stanzas on blank lines.

    Lines are trimmed and empty lines dropped. A poem without blank lines
    is a single stanza. Returns an empty list for an empty poem.
    """
    text = normalize_text(poem or '')
    if not text:
        return []

    stanzas = []
    for raw in STANZA_BREAK.split(text):
        lines = [line.strip() for line in raw.split('\n') if line.strip()]
        if lines:
            stanzas.append(lines)

    debug_print(f"[SEGMENT] {len(stanzas)} stanzas, "
                f"{sum(len(s) for s in stanzas)} lines", 'DEBUG', 'TEXT')
    return stanzas


def build_unit_specs(segments: List[List[str]], granularity: str) -> List[UnitSpec]:
    """
    Turn stanzas into unit specs for the given granularity.

    line   - one unit per line; line_number is the global line index
    stanza - one unit per stanza; line_number is the stanza's first line
    """
    granularity = Granularity(granularity)
    specs: List[UnitSpec] = []
    line_number = 0

    for segment_index, lines in enumerate(segments):
        if granularity == Granularity.STANZA:
            specs.append(UnitSpec(len(specs), segment_index, line_number, '\n'.join(lines)))
            line_number += len(lines)
            continue
        for line in lines:
            specs.append(UnitSpec(len(specs), segment_index, line_number, line))
            line_number += 1

    return specs


def strip_thinking(text: str) -> str:
    """Remove reasoning-model thinking blocks, including unclosed ones."""
    for tag in THINKING_TAGS:
        text = re.sub(rf'<{tag}>.*?</{tag}>', '', text, flags=re.DOTALL | re.IGNORECASE)
        text = re.sub(rf'<{tag}>.*$', '', text, flags=re.DOTALL | re.IGNORECASE)
    return text.strip()


def clean_model_output(raw: Optional[str]) -> str:
    """
    Clean a raw model response before it is parsed.

    Removes thinking tags, markdown code fences and common preambles.
    """
    if not raw:
        return ""

    text = strip_thinking(raw.strip())

    fenced = re.search(r'```(?:json|JSON)?\s*\n?(.*?)```', text, flags=re.DOTALL)
    if fenced:
        text = fenced.group(1)

    text = re.sub(r'^\s*(?:Here is|Here\'s) (?:the )?(?:translation|JSON)[^\n]*:\s*\n',
                  '', text, flags=re.IGNORECASE)
    return text.strip()
