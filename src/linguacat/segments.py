from __future__ import annotations

import copy
import html
import logging
import re
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import fields, replace
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import Any

from .anchor_tree import ANCHOR_ATTR, strip_html
from .models import (
    Comment,
    Evaluation,
    Overlay,
    OverlayKind,
    Role,
    Segment,
    SegmentStatus,
    TargetError,
)
from .permissions import can_review

# Provider callback used on segment completion: returns (evaluation, grammar errors).
Evaluator = Callable[[Segment], "tuple[Evaluation, list[TargetError]]"]

_UPDATABLE_FIELDS = frozenset(f.name for f in fields(Segment)) - {"id"}
_WS_SPLIT_RE = re.compile(r"(\s+)")
_REJECTABLE = frozenset({SegmentStatus.TRANSLATED, SegmentStatus.APPROVED_BY_P1})
_LOCKABLE = frozenset({SegmentStatus.APPROVED_BY_P1, SegmentStatus.APPROVED_BY_P2})

_logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _is_empty(markup: str) -> bool:
    return not strip_html(markup).strip()


def diff_html(old_text: str, new_text: str) -> str:
    """Word diff of two plain texts as a paragraph; words added by `new_text` are highlighted.

    Removed words are not rendered.
    """
    old_words = _WS_SPLIT_RE.split(old_text)
    new_words = _WS_SPLIT_RE.split(new_text)
    out: list[str] = []
    matcher = SequenceMatcher(None, old_words, new_words, autojunk=False)
    for tag, _i1, _i2, j1, j2 in matcher.get_opcodes():
        if tag == "delete":
            continue
        for word in new_words[j1:j2]:
            if not word:
                continue
            escaped = html.escape(word, quote=False)
            if tag == "equal" or not word.strip():
                out.append(escaped)
            else:
                out.append(f'<span class="proofread-change">{escaped}</span>')
    return f"<p>{''.join(out)}</p>"


def review_diff(segment: Segment) -> str | None:
    """Proofreading view of `segment`: its current target diffed against the translator snapshot."""
    if not segment.translator_target:
        return None
    return diff_html(strip_html(segment.translator_target), strip_html(segment.target))


def build_segments_from_sentences(sentences: Iterable[str], first_id: int = 1) -> tuple[list[Segment], str]:
    """Turn segmented sentences into draft segments plus the anchored source document HTML."""
    segments: list[Segment] = []
    anchored: list[str] = []
    next_id = int(first_id)
    for sentence in sentences:
        text = (sentence or "").strip()
        if not text:
            continue
        body = html.escape(text, quote=False)
        segments.append(Segment(id=next_id, source=f"<p>{body}</p>", target=""))
        anchored.append(f'<p {ANCHOR_ATTR}="{next_id}">{body}</p>')
        next_id += 1
    return segments, "".join(anchored)


class SegmentStore:
    """Ordered segment collection; `update_segment` is the only per-field mutation path.

    Segments are replaced, never modified in place, so snapshots handed to reconstruction,
    QA or statistics are not affected by later edits. Callers serialize mutations per id.
    """

    def __init__(self, segments: Iterable[Segment] = ()) -> None:
        self._segments: list[Segment] = list(segments)
        seen: set[int] = set()
        for seg in self._segments:
            if seg.id in seen:
                raise ValueError(f"Duplicate segment id: {seg.id}")
            seen.add(seg.id)

    def __iter__(self) -> Iterator[Segment]:
        return iter(list(self._segments))

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def segments(self) -> tuple[Segment, ...]:
        return tuple(self._segments)

    def snapshot(self) -> list[Segment]:
        return copy.deepcopy(self._segments)

    def index_of(self, segment_id: int) -> int | None:
        for i, seg in enumerate(self._segments):
            if seg.id == segment_id:
                return i
        return None

    def get(self, segment_id: int) -> Segment | None:
        idx = self.index_of(segment_id)
        return self._segments[idx] if idx is not None else None

    def next_segment_id(self) -> int:
        return max((seg.id for seg in self._segments), default=0) + 1

    # -- single mutation path -------------------------------------------------

    def update_segment(self, segment_id: int, **updates: Any) -> bool:
        """Shallow-merge `updates` into the segment. Returns False when nothing changed."""
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown segment field(s): {sorted(unknown)}")
        idx = self.index_of(segment_id)
        if idx is None:
            _logger.debug("update_segment ignored: unknown segment id %s", segment_id)
            return False
        seg = self._segments[idx]
        if seg.status is SegmentStatus.FINALIZED:
            _logger.debug("update_segment ignored: segment %s is finalized", segment_id)
            return False

        if "status" in updates:
            updates["status"] = SegmentStatus(updates["status"])
        if "start_time" in updates or "end_time" in updates:
            start = updates.get("start_time", seg.start_time)
            end = updates.get("end_time", seg.end_time)
            if start is not None and end is not None and not float(start) < float(end):
                _logger.warning(
                    "Segment %s: start %.3f must precede end %.3f; keeping previous times",
                    segment_id,
                    float(start),
                    float(end),
                )
                updates.pop("start_time", None)
                updates.pop("end_time", None)
        if not updates:
            return False

        self._segments[idx] = replace(seg, **updates)
        return True

    # -- editing --------------------------------------------------------------

    def update_target(self, segment_id: int, target: str, user: str | None = None) -> bool:
        seg = self.get(segment_id)
        if seg is None:
            return False
        updates: dict[str, Any] = {"target": target or "", "is_dirty": True, "last_modified_by": user}
        if _is_empty(target or ""):
            # An emptied translation cannot stay approved.
            updates.update(status=SegmentStatus.DRAFT, evaluation=None, target_errors=None)
        return self.update_segment(segment_id, **updates)

    def complete_segment(self, segment_id: int, evaluate: Evaluator) -> bool:
        """Run when the user leaves a segment: evaluate dirty translations and advance status."""
        seg = self.get(segment_id)
        if seg is None or seg.status is SegmentStatus.FINALIZED:
            return False
        if _is_empty(seg.target):
            if seg.status is SegmentStatus.DRAFT:
                return False
            return self.update_segment(
                segment_id, status=SegmentStatus.DRAFT, evaluation=None, target_errors=None
            )
        if not seg.is_dirty:
            return False

        try:
            evaluation, errors = evaluate(seg)
        except Exception as exc:
            _logger.warning("Evaluation failed for segment %s: %s", segment_id, exc)
            return False

        updates: dict[str, Any] = {
            "evaluation": evaluation,
            "target_errors": list(errors),
            "is_dirty": False,
        }
        if seg.status in (SegmentStatus.DRAFT, SegmentStatus.REJECTED):
            updates["status"] = SegmentStatus.TRANSLATED
        if seg.status is SegmentStatus.DRAFT:
            updates["translator_target"] = seg.target
        return self.update_segment(segment_id, **updates)

    def apply_evaluation(
        self, segment_id: int, evaluation: Evaluation, errors: Sequence[TargetError] = ()
    ) -> bool:
        return self.update_segment(
            segment_id, evaluation=evaluation, target_errors=list(errors), is_dirty=False
        )

    def set_times(self, segment_id: int, start: float, end: float) -> bool:
        if not float(start) < float(end):
            _logger.warning("Segment %s: rejected time range %s..%s", segment_id, start, end)
            return False
        return self.update_segment(segment_id, start_time=float(start), end_time=float(end), is_dirty=True)

    def toggle_overlay(self, segment_id: int, kind: OverlayKind, html_value: str | None = None) -> bool:
        """Show a freshly computed overlay, or flip visibility of the cached one."""
        seg = self.get(segment_id)
        if seg is None:
            return False
        kind = OverlayKind(kind)
        overlays = dict(seg.overlays)
        if html_value is not None:
            overlays[kind] = Overlay(kind=kind, html=html_value, visible=True)
        elif kind in overlays:
            cached = overlays[kind]
            overlays[kind] = replace(cached, visible=not cached.visible)
        else:
            return False
        return self.update_segment(segment_id, overlays=overlays)

    def add_comment(self, segment_id: int, author: str, text: str, created_at: str | None = None) -> bool:
        seg = self.get(segment_id)
        if seg is None:
            return False
        comment = Comment(author=author, text=text, created_at=created_at or _utc_now_iso())
        return self.update_segment(segment_id, comments=[*seg.comments, comment], is_dirty=True)

    def resolve_comment(self, segment_id: int, index: int) -> bool:
        seg = self.get(segment_id)
        if seg is None or not 0 <= index < len(seg.comments):
            return False
        comments = list(seg.comments)
        comments[index] = replace(comments[index], is_resolved=True)
        return self.update_segment(segment_id, comments=comments)

    # -- review workflow ------------------------------------------------------

    def approve(self, segment_id: int, roles: Iterable[Role | str], user: str | None = None) -> bool:
        seg = self.get(segment_id)
        if seg is None:
            return False
        roles = list(roles)
        if can_review(roles, seg.status, 1):
            new_status = SegmentStatus.APPROVED_BY_P1
        elif can_review(roles, seg.status, 2):
            new_status = SegmentStatus.APPROVED_BY_P2
        else:
            _logger.debug("approve ignored: roles %s cannot review segment %s in %s", roles, segment_id, seg.status)
            return False

        return self.update_segment(segment_id, status=new_status, last_modified_by=user)

    def reject(self, segment_id: int, roles: Iterable[Role | str], author: str, reason: str) -> bool:
        seg = self.get(segment_id)
        if seg is None or seg.status not in _REJECTABLE:
            return False
        roles = list(roles)
        if not (can_review(roles, seg.status, 1) or can_review(roles, seg.status, 2)):
            return False
        comment = Comment(author=author, text=reason, created_at=_utc_now_iso())
        return self.update_segment(
            segment_id,
            status=SegmentStatus.REJECTED,
            comments=[*seg.comments, comment],
            is_dirty=True,
            last_modified_by=author,
        )

    def finalize(self, segment_id: int) -> bool:
        seg = self.get(segment_id)
        if seg is None or seg.status not in _LOCKABLE:
            return False
        return self.update_segment(segment_id, status=SegmentStatus.FINALIZED, is_dirty=True)

    def finalize_all(self) -> int:
        return sum(1 for seg in list(self._segments) if self.finalize(seg.id))

    def prepare_for_proofreading(self, user: str | None = None) -> int:
        changed = 0
        for seg in list(self._segments):
            if seg.status is SegmentStatus.DRAFT and not _is_empty(seg.target):
                changed += self.update_segment(
                    seg.id,
                    status=SegmentStatus.TRANSLATED,
                    translator_target=seg.target,
                    is_dirty=True,
                    last_modified_by=user,
                )
        return changed

    # -- structural edits (the only operations that change order/count) --------

    def join(self, segment_id: int) -> int | None:
        """Merge a segment with its successor; returns the surviving id."""
        idx = self.index_of(segment_id)
        if idx is None or idx >= len(self._segments) - 1:
            return None
        current, following = self._segments[idx], self._segments[idx + 1]
        if SegmentStatus.FINALIZED in (current.status, following.status):
            return None
        joined = replace(
            current,
            source=f"{current.source} {following.source}",
            target=f"{current.target} {following.target}",
            evaluation=None,
            target_errors=None,
            is_dirty=True,
            end_time=following.end_time if following.end_time is not None else current.end_time,
        )
        self._segments[idx : idx + 2] = [joined]
        return joined.id

    def split(
        self,
        segment_id: int,
        sources: tuple[str, str],
        targets: tuple[str, str] = ("", ""),
    ) -> tuple[int, int] | None:
        """Replace one segment with two new ones; timed segments split proportionally to text length."""
        idx = self.index_of(segment_id)
        if idx is None:
            return None
        original = self._segments[idx]
        if original.status is SegmentStatus.FINALIZED:
            return None

        first_id = self.next_segment_id()
        second_id = first_id + 1
        times: list[tuple[float | None, float | None]] = [(None, None), (None, None)]
        if original.is_timed:
            start, end = float(original.start_time), float(original.end_time)  # type: ignore[arg-type]
            len_a = len(strip_html(sources[0]).strip())
            len_b = len(strip_html(sources[1]).strip())
            ratio = len_a / (len_a + len_b) if (len_a + len_b) else 0.5
            middle = start + (end - start) * ratio
            if not start < middle < end:
                middle = start + (end - start) / 2
            times = [(start, middle), (middle, end)]

        parts = [
            Segment(
                id=new_id,
                source=source,
                target=target,
                is_dirty=not _is_empty(target),
                start_time=span[0],
                end_time=span[1],
            )
            for new_id, source, target, span in zip((first_id, second_id), sources, targets, times)
        ]
        self._segments[idx : idx + 1] = parts
        return first_id, second_id
