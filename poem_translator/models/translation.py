"""
Translation Data Models
=======================
Variants, alignments and the outcome of a single unit translation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from poem_translator.config.constants import ErrorCode, FailureKind


@dataclass
class AlignedWord:
    """One source fragment and its translated counterpart."""
    original: str
    translation: str
    part_of_speech: str = "neutral"
    position: int = 0

    def to_dict(self) -> dict:
        return {
            'original': self.original,
            'translation': self.translation,
            'part_of_speech': self.part_of_speech,
            'position': self.position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AlignedWord':
        return cls(
            original=data.get('original', ''),
            translation=data.get('translation', ''),
            part_of_speech=data.get('part_of_speech', 'neutral'),
            position=int(data.get('position', 0)),
        )


@dataclass
class VariantMetadata:
    literalness: float = 0.0
    character_count: int = 0
    preserves_rhyme: bool = False
    preserves_meter: bool = False

    def to_dict(self) -> dict:
        return {
            'literalness': self.literalness,
            'character_count': self.character_count,
            'preserves_rhyme': self.preserves_rhyme,
            'preserves_meter': self.preserves_meter,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'VariantMetadata':
        return cls(
            literalness=float(data.get('literalness', 0.0)),
            character_count=int(data.get('character_count', 0)),
            preserves_rhyme=bool(data.get('preserves_rhyme', False)),
            preserves_meter=bool(data.get('preserves_meter', False)),
        )


@dataclass
class TranslationVariant:
    """One of the ranked alternative translations of a unit."""
    variant: int
    full_text: str
    words: List[AlignedWord] = field(default_factory=list)
    metadata: VariantMetadata = field(default_factory=VariantMetadata)

    def to_dict(self) -> dict:
        return {
            'variant': self.variant,
            'full_text': self.full_text,
            'words': [w.to_dict() for w in self.words],
            'metadata': self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TranslationVariant':
        return cls(
            variant=int(data.get('variant', 1)),
            full_text=data.get('full_text', ''),
            words=[AlignedWord.from_dict(w) for w in data.get('words', [])],
            metadata=VariantMetadata.from_dict(data.get('metadata', {})),
        )


@dataclass
class UnitContext:
    """Everything the unit translator needs for one attempt."""
    job_id: str
    unit_index: int
    source_text: str
    prev_text: Optional[str] = None
    next_text: Optional[str] = None
    full_text: str = ""
    is_first: bool = False
    is_last: bool = False
    source_language: str = ""
    target_language: str = ""
    # Empty means the configured default model
    model: str = ""
    # Opaque to the translator; passed through to prompt building
    preferences: Dict[str, Any] = field(default_factory=dict)
    force_refresh: bool = False


@dataclass
class TranslationResult:
    """A usable translation, possibly repaired or produced in fallback mode."""
    unit_index: int
    original_text: str
    variants: List[TranslationVariant]
    model_used: str
    repairs: List[str] = field(default_factory=list)
    fallback_mode: bool = False
    from_cache: bool = False

    @property
    def repaired(self) -> bool:
        return bool(self.repairs)

    def to_dict(self) -> dict:
        return {
            'unit_index': self.unit_index,
            'original_text': self.original_text,
            'variants': [v.to_dict() for v in self.variants],
            'model_used': self.model_used,
            'repaired': self.repaired,
            'repairs': list(self.repairs),
            'fallback_mode': self.fallback_mode,
            'from_cache': self.from_cache,
        }


@dataclass
class TranslationFailure:
    """Typed failure of a unit translation attempt."""
    unit_index: int
    message: str
    code: ErrorCode = ErrorCode.UNKNOWN
    kind: FailureKind = FailureKind.GENERATION_ERROR
    retryable: bool = True

    def to_dict(self) -> dict:
        return {
            'unit_index': self.unit_index,
            'kind': self.kind.value,
            'code': self.code.value,
            'message': self.message,
            'retryable': self.retryable,
        }


TranslationOutcome = Union[TranslationResult, TranslationFailure]
