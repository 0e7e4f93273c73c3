from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"


class SegmentStatus(str, Enum):
    DRAFT = "draft"
    TRANSLATED = "translated"
    APPROVED_BY_P1 = "approved_by_p1"
    APPROVED_BY_P2 = "approved_by_p2"
    REJECTED = "rejected"
    FINALIZED = "finalized"


REVIEWED_STATUSES = frozenset(
    {SegmentStatus.TRANSLATED, SegmentStatus.APPROVED_BY_P1, SegmentStatus.APPROVED_BY_P2, SegmentStatus.REJECTED}
)


class Role(str, Enum):
    OWNER = "Owner"
    PROJECT_LEADER = "Project Leader"
    PROOFREADER_1 = "Proofreader 1"
    PROOFREADER_2 = "Proofreader 2"
    TRANSLATOR = "Translator"


class OverlayKind(str, Enum):
    """Cached analysis renderings that can be toggled without re-querying the provider."""

    STRUCTURE = "structure"
    DATE_HIGHLIGHT = "date_highlight"


# overlay kind -> (visibility key, html key) in the project file
_OVERLAY_KEYS: dict[OverlayKind, tuple[str, str]] = {
    OverlayKind.STRUCTURE: ("isStructureVisible", "structuredSourceHtml"),
    OverlayKind.DATE_HIGHLIGHT: ("isDateHighlightVisible", "dateHighlightHtml"),
}


class QaIssueType(str, Enum):
    EMPTY_TRANSLATION = "EMPTY_TRANSLATION"
    INCONSISTENT_TRANSLATION = "INCONSISTENT_TRANSLATION"
    TERM_MISMATCH = "TERM_MISMATCH"
    TAG_MISMATCH = "TAG_MISMATCH"
    NUMBER_MISMATCH = "NUMBER_MISMATCH"
    SPACING_ERROR = "SPACING_ERROR"


@dataclass
class Issue:
    code: str
    severity: Severity
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Evaluation:
    rating: float
    feedback: str = ""
    consistency: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"rating": self.rating, "feedback": self.feedback}
        if self.consistency is not None:
            out["consistency"] = self.consistency
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Evaluation:
        return cls(
            rating=data.get("rating", 0),
            feedback=str(data.get("feedback", "")),
            consistency=data.get("consistency"),
        )


@dataclass(frozen=True)
class TargetError:
    """A grammar-analysis span: the erroneous text, its correction and why."""

    error: str
    correction: str
    explanation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "correction": self.correction, "explanation": self.explanation}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TargetError:
        return cls(
            error=str(data.get("error", "")),
            correction=str(data.get("correction", "")),
            explanation=str(data.get("explanation", "")),
        )


@dataclass(frozen=True)
class Comment:
    author: str
    text: str
    created_at: str
    is_resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "author": self.author,
            "text": self.text,
            "createdAt": self.created_at,
            "isResolved": self.is_resolved,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Comment:
        return cls(
            author=str(data.get("author", "")),
            text=str(data.get("text", "")),
            created_at=str(data.get("createdAt", "")),
            is_resolved=bool(data.get("isResolved", False)),
        )


@dataclass(frozen=True)
class Overlay:
    kind: OverlayKind
    html: str
    visible: bool = False


@dataclass
class Segment:
    """One translatable unit: a sentence, paragraph or subtitle line."""

    id: int
    source: str
    target: str = ""
    status: SegmentStatus = SegmentStatus.DRAFT
    # Snapshot of the target at the moment it left draft (baseline for proofreading diffs).
    translator_target: str | None = None
    evaluation: Evaluation | None = None
    target_errors: list[TargetError] | None = None
    is_dirty: bool = False
    last_modified_by: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    translation_source: str | None = None  # 'tm-100' | 'user'
    overlays: dict[OverlayKind, Overlay] = field(default_factory=dict)
    comments: list[Comment] = field(default_factory=list)

    @property
    def is_timed(self) -> bool:
        return self.start_time is not None and self.end_time is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "status": self.status.value,
        }
        if self.translator_target is not None:
            out["translatorTarget"] = self.translator_target
        if self.evaluation is not None:
            out["evaluation"] = self.evaluation.to_dict()
        if self.target_errors is not None:
            out["targetErrors"] = [e.to_dict() for e in self.target_errors]
        if self.is_dirty:
            out["isDirty"] = True
        if self.last_modified_by is not None:
            out["lastModifiedBy"] = self.last_modified_by
        if self.start_time is not None:
            out["startTime"] = self.start_time
        if self.end_time is not None:
            out["endTime"] = self.end_time
        if self.translation_source is not None:
            out["translationSource"] = self.translation_source
        for kind, overlay in self.overlays.items():
            visible_key, html_key = _OVERLAY_KEYS[kind]
            out[visible_key] = overlay.visible
            out[html_key] = overlay.html
        if self.comments:
            out["comments"] = [c.to_dict() for c in self.comments]
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Segment:
        overlays: dict[OverlayKind, Overlay] = {}
        for kind, (visible_key, html_key) in _OVERLAY_KEYS.items():
            html = data.get(html_key)
            if html is None:
                continue
            overlays[kind] = Overlay(kind=kind, html=str(html), visible=bool(data.get(visible_key, False)))

        evaluation = data.get("evaluation")
        errors = data.get("targetErrors")
        start = data.get("startTime")
        end = data.get("endTime")
        return cls(
            id=int(data["id"]),
            source=str(data.get("source") or ""),
            target=str(data.get("target") or ""),
            status=SegmentStatus(data.get("status") or SegmentStatus.DRAFT.value),
            translator_target=data.get("translatorTarget"),
            evaluation=Evaluation.from_dict(evaluation) if isinstance(evaluation, dict) else None,
            target_errors=[TargetError.from_dict(e) for e in errors] if isinstance(errors, list) else None,
            is_dirty=bool(data.get("isDirty", False)),
            last_modified_by=data.get("lastModifiedBy"),
            start_time=float(start) if start is not None else None,
            end_time=float(end) if end is not None else None,
            translation_source=data.get("translationSource"),
            overlays=overlays,
            comments=[Comment.from_dict(c) for c in data.get("comments") or []],
        )


@dataclass(frozen=True)
class TranslationUnit:
    source: str
    target: str


@dataclass(frozen=True)
class Term:
    id: int
    source: str
    target: str
    definition: str | None = None


@dataclass(frozen=True)
class TmMatch:
    """Best translation-memory hit for one segment, produced by an external lookup."""

    segment_id: int
    score: float
    target: str = ""
    source: str = ""


@dataclass
class QaIssue:
    segment_id: int
    type: QaIssueType
    description: str
    source: str
    target: str
    suggestion: str | None = None
    suggested_fix: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "segmentId": self.segment_id,
            "type": self.type.value,
            "description": self.description,
            "source": self.source,
            "target": self.target,
        }
        if self.suggestion is not None:
            out["suggestion"] = self.suggestion
        if self.suggested_fix is not None:
            out["suggestedFix"] = self.suggested_fix
        return out
