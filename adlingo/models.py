"""
Data model shared across the engine.

TranslationUnit lives for a single extraction pass. Versions and tasks are
persisted by adlingo.persistence.database. QualityAnalysis and
CorrectionItem are parsed from model JSON with an explicit default for every
field.
"""

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class UnitKind(str, Enum):
    """Kinds of translation units, with their placeholder prefix."""
    BLOCK = "block"
    TEXT = "text"
    ATTRIBUTE = "attribute"

    @property
    def prefix(self) -> str:
        return self.value[0]

    @classmethod
    def from_unit_id(cls, unit_id: str) -> 'UnitKind':
        return {'b': cls.BLOCK, 't': cls.TEXT, 'a': cls.ATTRIBUTE}[unit_id[0]]


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskKind(str, Enum):
    PAGE = "page"
    IMAGE = "image"


@dataclass
class TranslationUnit:
    """
    A single translatable piece of a document.

    Attributes:
        unit_id: Placeholder id (b0, t1, a2...), unique within one extraction pass
        kind: block, text or attribute
        source_markup: Inner markup for block units, raw value otherwise
        source_text: Visible text, used for context and logging
        leading_space: Whitespace kept outside the placeholder (text units)
        trailing_space: Whitespace kept outside the placeholder (text units)
    """
    unit_id: str
    kind: UnitKind
    source_markup: str
    source_text: str
    leading_space: str = ""
    trailing_space: str = ""

    @property
    def token(self) -> str:
        return "{{" + self.unit_id + "}}"

    @property
    def carries_markup(self) -> bool:
        return self.kind == UnitKind.BLOCK

    def __repr__(self) -> str:
        preview = self.source_text[:50] + "..." if len(self.source_text) > 50 else self.source_text
        return f"TranslationUnit(id={self.unit_id}, kind={self.kind.value}, text='{preview}')"


@dataclass
class StrippedSubtree:
    """A non-translatable subtree replaced by an inert comment placeholder."""
    placeholder: str
    original_markup: str


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if isinstance(item, dict):
                # Some models answer with {"issue": "..."} objects
                item = item.get('issue') or item.get('description') or item.get('text') or ""
            text = _as_text(item)
            if text:
                items.append(text)
        return items
    return []


def _as_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


@dataclass
class CorrectionItem:
    """A find/replace pair over visible text."""
    find: str
    replace: str

    def to_dict(self) -> Dict[str, str]:
        return {'find': self.find, 'replace': self.replace}

    @classmethod
    def parse_list(cls, value: Any) -> List['CorrectionItem']:
        """Parse a model-supplied list, dropping malformed entries."""
        if not isinstance(value, (list, tuple)):
            return []
        items = []
        for entry in value:
            if not isinstance(entry, dict):
                continue
            find = entry.get('find')
            replace = entry.get('replace')
            if not isinstance(find, str) or not find or not isinstance(replace, str):
                logger.debug(f"Dropping malformed correction: {entry!r}")
                continue
            if find == replace:
                continue
            items.append(cls(find=find, replace=replace))
        return items


@dataclass
class QualityAnalysis:
    """
    Result of one scoring call.

    Image scoring fills the spelling/grammar/missing lists and extracted_text.
    Page review additionally fills fluency_issues, context_errors,
    name_localization and suggested_corrections.
    """
    score: int = 0
    spelling_errors: List[str] = field(default_factory=list)
    grammar_issues: List[str] = field(default_factory=list)
    missing_text: List[str] = field(default_factory=list)
    overall_assessment: str = ""
    extracted_text: str = ""
    fluency_issues: List[str] = field(default_factory=list)
    context_errors: List[str] = field(default_factory=list)
    name_localization: List[str] = field(default_factory=list)
    suggested_corrections: List[CorrectionItem] = field(default_factory=list)

    @property
    def all_issues(self) -> List[str]:
        return (self.spelling_errors + self.grammar_issues + self.missing_text
                + self.fluency_issues + self.context_errors)

    @classmethod
    def from_payload(cls, payload: Any) -> 'QualityAnalysis':
        """Build from model JSON, defaulting every missing or malformed field."""
        if not isinstance(payload, dict):
            logger.warning(f"Quality payload is not an object: {type(payload).__name__}")
            return cls()

        score = payload.get('quality_score', payload.get('score'))
        if score is None:
            logger.warning("Quality payload has no score, defaulting to 0")

        return cls(
            score=_as_score(score),
            spelling_errors=_as_text_list(payload.get('spelling_errors')),
            grammar_issues=_as_text_list(payload.get('grammar_issues')),
            missing_text=_as_text_list(payload.get('missing_text')),
            overall_assessment=_as_text(payload.get('overall_assessment')),
            extracted_text=_as_text(payload.get('extracted_text')),
            fluency_issues=_as_text_list(payload.get('fluency_issues')),
            context_errors=_as_text_list(payload.get('context_errors')),
            name_localization=_as_text_list(payload.get('name_localization')),
            suggested_corrections=CorrectionItem.parse_list(payload.get('suggested_corrections')),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['quality_score'] = data.pop('score')
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['QualityAnalysis']:
        if not data:
            return None
        return cls.from_payload(data)


@dataclass
class CorrectionInput:
    """
    Instructions handed to the next regeneration attempt.

    Attributes:
        corrected_text: "should read" directive plus itemized fixes
        visual_instructions: assessment plus itemized fixes as free text
        corrections: find/replace pairs for the text pipeline
    """
    corrected_text: str = ""
    visual_instructions: str = ""
    corrections: List[CorrectionItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'corrected_text': self.corrected_text,
            'visual_instructions': self.visual_instructions,
            'corrections': [c.to_dict() for c in self.corrections],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['CorrectionInput']:
        if not data:
            return None
        return cls(
            corrected_text=data.get('corrected_text', ''),
            visual_instructions=data.get('visual_instructions', ''),
            corrections=CorrectionItem.parse_list(data.get('corrections')),
        )

    def is_empty(self) -> bool:
        return not (self.corrected_text or self.visual_instructions or self.corrections)


@dataclass
class PreviousReview:
    """Context for re-reviewing a page after corrections were applied."""
    applied_corrections: List[CorrectionItem]
    previous_score: int
    previous_issues: List[str] = field(default_factory=list)


@dataclass
class Version:
    """One immutable attempt for a task."""
    id: str
    task_id: str
    version_number: int
    artifact: Optional[str]
    is_active: bool = False
    quality_score: Optional[int] = None
    quality_analysis: Optional[QualityAnalysis] = None
    correction_input: Optional[CorrectionInput] = None
    generation_duration_seconds: float = 0.0
    error_message: Optional[str] = None
    created_at: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.artifact is not None and self.error_message is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'task_id': self.task_id,
            'version_number': self.version_number,
            'artifact': self.artifact,
            'is_active': self.is_active,
            'quality_score': self.quality_score,
            'quality_analysis': self.quality_analysis.to_dict() if self.quality_analysis else None,
            'correction_input': self.correction_input.to_dict() if self.correction_input else None,
            'generation_duration_seconds': self.generation_duration_seconds,
            'error_message': self.error_message,
            'created_at': self.created_at,
        }


@dataclass
class TranslationTask:
    """A page translation or one image-language-ratio combination."""
    id: str
    job_id: str
    kind: TaskKind
    language: str
    source: str
    aspect_ratio: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None
    active_version_id: Optional[str] = None
    result: Optional[str] = None
    quality_score: Optional[int] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self, include_source: bool = False) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'job_id': self.job_id,
            'kind': self.kind.value,
            'language': self.language,
            'aspect_ratio': self.aspect_ratio,
            'status': self.status.value,
            'error_message': self.error_message,
            'active_version_id': self.active_version_id,
            'quality_score': self.quality_score,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        if self.kind == TaskKind.IMAGE or include_source:
            data['source'] = self.source
            data['result'] = self.result
        return data


@dataclass
class TranslationJob:
    """A batch of tasks created together."""
    id: str
    name: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'kind': self.kind.value,
            'status': self.status.value,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
