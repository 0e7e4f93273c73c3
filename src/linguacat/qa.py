from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from .anchor_tree import find_tags, strip_html
from .models import QaIssue, QaIssueType, Segment, Severity, Term
from .segments import SegmentStore

NUMBER_RE = re.compile(r"\d+(\.\d+)?")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")

QA_SEVERITY: dict[QaIssueType, Severity] = {
    QaIssueType.EMPTY_TRANSLATION: Severity.ERROR,
    QaIssueType.NUMBER_MISMATCH: Severity.ERROR,
    QaIssueType.INCONSISTENT_TRANSLATION: Severity.WARN,
    QaIssueType.TERM_MISMATCH: Severity.WARN,
    QaIssueType.TAG_MISMATCH: Severity.WARN,
    QaIssueType.SPACING_ERROR: Severity.INFO,
}

_logger = logging.getLogger(__name__)


@dataclass
class QaContext:
    """State shared by the rules during one run."""

    terms: Sequence[Term]
    # stripped source -> stripped targets, in segment order
    translations: dict[str, list[str]]
    reported_sources: set[str] = field(default_factory=set)


QaRule = Callable[[Segment, str, str, QaContext], Iterable[QaIssue]]


def find_numbers(text: str) -> list[str]:
    return [m.group(0) for m in NUMBER_RE.finditer(text or "")]


def _issue(segment: Segment, issue_type: QaIssueType, description: str, **extra: str) -> QaIssue:
    return QaIssue(
        segment_id=segment.id,
        type=issue_type,
        description=description,
        source=segment.source,
        target=segment.target,
        **extra,
    )


def check_inconsistency(segment: Segment, source_text: str, target_text: str, ctx: QaContext) -> list[QaIssue]:
    observed = list(dict.fromkeys(ctx.translations.get(source_text, ())))
    if len(observed) < 2 or source_text in ctx.reported_sources:
        return []
    ctx.reported_sources.add(source_text)
    return [
        _issue(
            segment,
            QaIssueType.INCONSISTENT_TRANSLATION,
            "The source segment is translated inconsistently across the document. "
            f"Found translations: [{' | '.join(observed)}]",
        )
    ]


def check_terminology(segment: Segment, source_text: str, target_text: str, ctx: QaContext) -> list[QaIssue]:
    source_lower = source_text.lower()
    target_lower = target_text.lower()
    issues: list[QaIssue] = []
    for term in ctx.terms:
        if term.source.lower() in source_lower and term.target.lower() not in target_lower:
            issues.append(
                _issue(
                    segment,
                    QaIssueType.TERM_MISMATCH,
                    f'The source term "{term.source}" was found, but the target term "{term.target}" '
                    "is missing in the translation.",
                    suggestion=f'Ensure "{term.target}" is used.',
                )
            )
    return issues


def check_tag_mismatch(segment: Segment, source_text: str, target_text: str, ctx: QaContext) -> list[QaIssue]:
    source_tags = len(find_tags(segment.source))
    target_tags = len(find_tags(segment.target))
    if source_tags == target_tags:
        return []
    return [
        _issue(
            segment,
            QaIssueType.TAG_MISMATCH,
            f"Tag mismatch: Source has {source_tags} tags, but target has {target_tags} tags.",
            suggestion="Check for missing or extra formatting tags.",
        )
    ]


def check_numbers(segment: Segment, source_text: str, target_text: str, ctx: QaContext) -> list[QaIssue]:
    source_numbers = find_numbers(source_text)
    target_numbers = find_numbers(target_text)
    if not source_numbers or source_numbers == target_numbers:
        return []
    return [
        _issue(
            segment,
            QaIssueType.NUMBER_MISMATCH,
            f"Number mismatch: Source numbers ({', '.join(source_numbers)}) do not match "
            f"target numbers ({', '.join(target_numbers)}).",
        )
    ]


def check_spacing(segment: Segment, source_text: str, target_text: str, ctx: QaContext) -> list[QaIssue]:
    clean = target_text.strip()
    problems: list[str] = []
    if len(target_text) > len(clean):
        problems.append("leading/trailing spaces")
    if _MULTI_SPACE_RE.search(clean):
        problems.append("double spaces")
    if not problems:
        return []
    return [
        _issue(
            segment,
            QaIssueType.SPACING_ERROR,
            f"Spacing issue found: {' and '.join(problems)}.",
            suggestion="Remove extra whitespace.",
            suggested_fix=f"<p>{html.escape(_MULTI_SPACE_RE.sub(' ', clean), quote=False)}</p>",
        )
    ]


DEFAULT_RULES: tuple[QaRule, ...] = (check_inconsistency, check_terminology, check_numbers, check_spacing)


def build_rules(*, tag_mismatch: bool = False) -> tuple[QaRule, ...]:
    if not tag_mismatch:
        return DEFAULT_RULES
    return (check_inconsistency, check_terminology, check_tag_mismatch, check_numbers, check_spacing)


def run_qa_checks(
    segments: Sequence[Segment],
    terms: Sequence[Term] = (),
    *,
    rules: Sequence[QaRule] | None = None,
) -> list[QaIssue]:
    """Run every rule over every segment; issues come in segment order, then rule order.

    Segments with an empty target only get the empty-translation check.
    """
    active = DEFAULT_RULES if rules is None else tuple(rules)
    texts = [(strip_html(seg.source), strip_html(seg.target)) for seg in segments]

    translations: dict[str, list[str]] = {}
    for source_text, target_text in texts:
        if source_text and target_text:
            translations.setdefault(source_text, []).append(target_text)
    ctx = QaContext(terms=terms, translations=translations)

    issues: list[QaIssue] = []
    for seg, (source_text, target_text) in zip(segments, texts):
        if not target_text.strip():
            if source_text.strip():
                issues.append(_issue(seg, QaIssueType.EMPTY_TRANSLATION, "The target segment is empty."))
            continue
        for rule in active:
            issues.extend(rule(seg, source_text, target_text, ctx))

    _logger.info("QA: %d issue(s) in %d segment(s)", len(issues), len(segments))
    return issues


def apply_suggested_fix(store: SegmentStore, issue: QaIssue, user: str | None = None) -> bool:
    if issue.suggested_fix is None:
        return False
    return store.update_target(issue.segment_id, issue.suggested_fix, user)
