"""
Response Validation
===================
Parse model output and coerce it into exactly three translation variants.

A response that parses but has the wrong shape is repaired with field
defaults rather than rejected; every repair is reported so it can be logged.
Only output that cannot be parsed at all (or contains no variants) raises.
"""
import json
import re
from typing import Any, Dict, List, Tuple
from poem_translator.config.constants import VARIANT_COUNT
from poem_translator.models.translation import AlignedWord, TranslationVariant, VariantMetadata
from poem_translator.utils.text_processing import clean_model_output

_OBJECT_PATTERN = re.compile(r'\{.*\}', re.DOTALL)


class ResponseParseError(ValueError):
    """Model output could not be turned into any variant."""


def parse_json_payload(raw: str) -> Any:
    """Parse model output as JSON, tolerating fences, think tags and chatter around the object."""
    text = clean_model_output(raw)
    if not text:
        raise ResponseParseError("Empty response")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    match = _OBJECT_PATTERN.search(text)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Malformed JSON: {e}") from e
    raise ResponseParseError("No JSON object in response")


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    """First present key, accepting camelCase and snake_case spellings."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _extract_variant_list(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        found = _pick(payload, 'translations', 'variants')
        if isinstance(found, list):
            return found
        if _pick(payload, 'fullText', 'full_text', 'translation') is not None:
            return [payload]
    raise ResponseParseError("Response has no translations list")


def _fit_count(items: List[Any], repairs: List[str]) -> List[Any]:
    """Truncate or pad (by repeating the last variant) to VARIANT_COUNT."""
    if not items:
        raise ResponseParseError("Response contains no variants")
    if len(items) > VARIANT_COUNT:
        repairs.append(f"truncated variants from {len(items)} to {VARIANT_COUNT}")
        return items[:VARIANT_COUNT]
    if len(items) < VARIANT_COUNT:
        repairs.append(f"padded variants from {len(items)} to {VARIANT_COUNT}")
        return items + [items[-1]] * (VARIANT_COUNT - len(items))
    return items


def _coerce_words(raw_words: Any, label: str, repairs: List[str]) -> List[AlignedWord]:
    if raw_words is None:
        repairs.append(f"{label}: missing words")
        return []
    if not isinstance(raw_words, list):
        repairs.append(f"{label}: words is not a list")
        return []

    words = []
    for position, raw in enumerate(raw_words):
        if not isinstance(raw, dict):
            repairs.append(f"{label}: dropped malformed word {position}")
            continue
        part_of_speech = _pick(raw, 'partOfSpeech', 'part_of_speech', 'pos')
        if part_of_speech is None:
            repairs.append(f"{label}: word {position} missing partOfSpeech")
            part_of_speech = 'neutral'
        raw_position = _pick(raw, 'position')
        try:
            word_position = position if raw_position is None else int(raw_position)
        except (TypeError, ValueError):
            repairs.append(f"{label}: word {position} has invalid position")
            word_position = position
        words.append(AlignedWord(
            original=str(_pick(raw, 'original', 'source') or ''),
            translation=str(_pick(raw, 'translation', 'target') or ''),
            part_of_speech=str(part_of_speech),
            position=word_position,
        ))
    return words


def _coerce_number(value: Any, label: str, repairs: List[str], cast=float):
    if value is None:
        repairs.append(f"{label} missing")
        return cast(0)
    try:
        return cast(value)
    except (TypeError, ValueError):
        repairs.append(f"{label} invalid")
        return cast(0)


def _coerce_metadata(raw: Any, label: str, repairs: List[str]) -> VariantMetadata:
    if not isinstance(raw, dict):
        repairs.append(f"{label}: missing metadata")
        raw = {}
    literalness = _coerce_number(_pick(raw, 'literalness'), f"{label}: literalness", repairs)
    if not 0.0 <= literalness <= 1.0:
        repairs.append(f"{label}: literalness clamped")
        literalness = min(1.0, max(0.0, literalness))
    character_count = _coerce_number(
        _pick(raw, 'characterCount', 'character_count'), f"{label}: characterCount", repairs, cast=int
    )
    # Rhyme/meter flags are optional; absence is not a repair
    return VariantMetadata(
        literalness=literalness,
        character_count=character_count,
        preserves_rhyme=bool(_pick(raw, 'preservesRhyme', 'preserves_rhyme') or False),
        preserves_meter=bool(_pick(raw, 'preservesMeter', 'preserves_meter') or False),
    )


def coerce_variants(payload: Any, source_text: str) -> Tuple[List[TranslationVariant], List[str]]:
    """
    Coerce a parsed payload into exactly three variants.

    Returns ``(variants, repairs)``; ``repairs`` is empty for a response
    that already had the expected shape.
    """
    repairs: List[str] = []
    items = _fit_count(_extract_variant_list(payload), repairs)

    variants = []
    for index, raw in enumerate(items):
        label = f"variant {index + 1}"
        if isinstance(raw, str):
            raw = {'fullText': raw}
            repairs.append(f"{label}: bare string")
        elif not isinstance(raw, dict):
            repairs.append(f"{label}: malformed, replaced with source text")
            raw = {}

        full_text = _pick(raw, 'fullText', 'full_text', 'translation', 'text')
        if not isinstance(full_text, str) or not full_text.strip():
            repairs.append(f"{label}: missing fullText")
            full_text = source_text

        # Rank is positional; only a conflicting explicit number is a repair
        number = _pick(raw, 'variant')
        if number is not None and number != index + 1:
            repairs.append(f"{label}: renumbered from {number}")

        variants.append(TranslationVariant(
            variant=index + 1,
            full_text=full_text.strip(),
            words=_coerce_words(_pick(raw, 'words', 'alignment'), label, repairs),
            metadata=_coerce_metadata(_pick(raw, 'metadata'), label, repairs),
        ))
    return variants, repairs


def variants_from_plain(payload: Any, source_text: str) -> Tuple[List[TranslationVariant], List[str]]:
    """
    Build variants from a fallback-mode response: full texts only, no alignment.
    """
    repairs: List[str] = []
    items = _fit_count(_extract_variant_list(payload), repairs)

    variants = []
    for index, raw in enumerate(items):
        if isinstance(raw, dict):
            raw = _pick(raw, 'fullText', 'full_text', 'translation', 'text')
        text = raw.strip() if isinstance(raw, str) else ''
        if not text:
            repairs.append(f"variant {index + 1}: missing text")
            text = source_text
        variants.append(TranslationVariant(
            variant=index + 1,
            full_text=text,
            words=[],
            metadata=VariantMetadata(character_count=len(text)),
        ))
    return variants, repairs
