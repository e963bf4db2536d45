"""
Request/Response Schemas
========================
Lightweight validation schemas for API requests and responses.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from poem_translator.config.constants import Granularity


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    return int(value)


@dataclass
class CreateJobRequest:
    """Request schema for job creation."""
    thread_id: str
    poem: str
    source_language: str = ""
    target_language: str = ""
    model: Optional[str] = None
    granularity: Optional[str] = None
    segments: Optional[List[List[str]]] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    replace: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreateJobRequest':
        return cls(
            thread_id=str(data.get('thread_id') or ''),
            poem=data.get('poem') or '',
            source_language=data.get('source_language') or '',
            target_language=data.get('target_language') or '',
            model=data.get('model') or None,
            granularity=data.get('granularity') or None,
            segments=data.get('segments'),
            preferences=data.get('preferences') or {},
            replace=_as_bool(data.get('replace', False)),
        )

    def validate(self) -> List[str]:
        """Validate the request and return list of errors."""
        errors = []
        if not self.thread_id:
            errors.append("thread_id is required")
        if not self.poem.strip() and not self.segments:
            errors.append("poem is required")
        if not self.target_language:
            errors.append("target_language is required")
        if self.granularity and self.granularity not in {g.value for g in Granularity}:
            errors.append("granularity must be 'line' or 'stanza'")
        if self.segments is not None:
            if not isinstance(self.segments, list) or not all(
                    isinstance(s, list) and all(isinstance(line, str) for line in s)
                    for s in self.segments):
                errors.append("segments must be a list of lists of lines")
        if not isinstance(self.preferences, dict):
            errors.append("preferences must be an object")
        return errors


@dataclass
class TickRequest:
    budget_ms: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TickRequest':
        return cls(budget_ms=_as_optional_int(data.get('budget_ms')))

    def validate(self) -> List[str]:
        if self.budget_ms is not None and self.budget_ms <= 0:
            return ["budget_ms must be positive"]
        return []


@dataclass
class UnitRetryRequest:
    force: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UnitRetryRequest':
        return cls(force=_as_bool(data.get('force', False)))


@dataclass
class SegmentRetryRequest:
    clear_results: bool = False
    budget_ms: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SegmentRetryRequest':
        return cls(
            clear_results=_as_bool(data.get('clear_results', False)),
            budget_ms=_as_optional_int(data.get('budget_ms')),
        )

    def validate(self) -> List[str]:
        if self.budget_ms is not None and self.budget_ms <= 0:
            return ["budget_ms must be positive"]
        return []


@dataclass
class ModelInfo:
    """Information about a model advertised by the provider."""
    name: str
    size: Optional[int] = None
    modified_at: Optional[str] = None
    digest: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'size': self.size,
            'modified_at': self.modified_at,
        }


@dataclass
class HealthStatus:
    """Health check response."""
    status: str
    provider_connected: bool
    database_connected: bool
    version: str

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'provider_connected': self.provider_connected,
            'database_connected': self.database_connected,
            'version': self.version,
        }
