from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from .anchor_tree import find_tags, strip_html
from .models import Segment, Term, TmMatch
from .tm import TM_EXACT_SOURCE

TOTAL = "Total"
REPETITION = "Repetition"
PRE_TRANSLATED = "Pre-translated"
UNTRANSLATED = "Untranslated"
EDITED = "Edited"
TRANSLATOR_APPROVED = "Translator approved"

# Counts-report labels in display order; the last four are mutually exclusive.
COUNT_LABELS = (TOTAL, REPETITION, PRE_TRANSLATED, UNTRANSLATED, EDITED, TRANSLATOR_APPROVED)
EXCLUSIVE_COUNT_LABELS = (PRE_TRANSLATED, UNTRANSLATED, EDITED, TRANSLATOR_APPROVED)

NO_MATCH = "No Match"
REPETITION_WEIGHT = 0.3

# (label, lowest score, weight), checked top to bottom after the repetition override.
MATCH_BANDS: tuple[tuple[str, float, float], ...] = (
    ("100%", 1.0, 0.3),
    ("95-99%", 0.95, 0.5),
    ("85-94%", 0.85, 0.8),
    ("75-84%", 0.75, 0.8),
    ("50-74%", 0.50, 1.0),
)
NO_MATCH_WEIGHT = 1.0
ANALYSIS_LABELS = (TOTAL, REPETITION, *(band[0] for band in MATCH_BANDS), NO_MATCH)
ANALYSIS_WEIGHTS: dict[str, float] = {
    REPETITION: REPETITION_WEIGHT,
    **{label: weight for label, _, weight in MATCH_BANDS},
    NO_MATCH: NO_MATCH_WEIGHT,
}

FUZZY_HIT_MIN = 0.7

_WS_RE = re.compile(r"\s+")

_logger = logging.getLogger(__name__)


def count_words(markup: str) -> int:
    text = strip_html(markup).strip()
    return len(text.split()) if text else 0


def count_chars(markup: str) -> int:
    return len(strip_html(markup))


def count_tags(markup: str) -> int:
    return len(find_tags(markup))


@dataclass
class CountRow:
    label: str
    segments: int = 0
    source_words: int = 0
    source_chars: int = 0
    source_tags: int = 0
    target_words: int = 0
    target_chars: int = 0
    target_tags: int = 0
    percentage: float = 0.0

    def add(self, seg: Segment) -> None:
        self.segments += 1
        self.source_words += count_words(seg.source)
        self.source_chars += count_chars(seg.source)
        self.source_tags += count_tags(seg.source)
        self.target_words += count_words(seg.target)
        self.target_chars += count_chars(seg.target)
        self.target_tags += count_tags(seg.target)


@dataclass
class AnalysisRow:
    label: str
    weight: float = 1.0
    segments: int = 0
    source_words: int = 0
    weighted_words: float = 0.0
    source_chars: int = 0
    weighted_chars: float = 0.0
    source_tags: int = 0
    percentage: float = 0.0

    def add(self, seg: Segment) -> None:
        words = count_words(seg.source)
        chars = count_chars(seg.source)
        self.segments += 1
        self.source_words += words
        self.source_chars += chars
        self.source_tags += count_tags(seg.source)
        self.weighted_words += words * self.weight
        self.weighted_chars += chars * self.weight


@dataclass
class StatisticsReport:
    counts: list[CountRow] = field(default_factory=list)
    analysis: list[AnalysisRow] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": [asdict(row) for row in self.counts],
            "analysis": [asdict(row) for row in self.analysis],
        }


@dataclass(frozen=True)
class TranslationStats:
    """Live editor status-bar figures over translated segments."""

    char_count: int
    char_count_with_spaces: int
    word_count: int
    terminology_hits: int
    tm_hits_fuzzy: int
    tm_hits_100: int


def _repeated_sources(segments: Sequence[Segment]) -> set[str]:
    occurrences = Counter(strip_html(seg.source) for seg in segments)
    return {text for text, n in occurrences.items() if n > 1}


def _set_percentages(rows: Iterable[CountRow | AnalysisRow], total: int) -> None:
    for row in rows:
        row.percentage = (row.segments / total) * 100 if total else 0.0


def counts_report(segments: Sequence[Segment]) -> list[CountRow]:
    """Progress buckets. Repetition overlaps the others; the remaining four partition the segments."""
    rows = {label: CountRow(label) for label in COUNT_LABELS}
    repeated = _repeated_sources(segments)
    for seg in segments:
        rows[TOTAL].add(seg)
        if strip_html(seg.source) in repeated:
            rows[REPETITION].add(seg)
        if not strip_html(seg.target).strip():
            rows[UNTRANSLATED].add(seg)
        elif seg.translation_source == TM_EXACT_SOURCE:
            rows[PRE_TRANSLATED].add(seg)
        elif seg.evaluation is not None:
            # An evaluation may predate later edits; it is taken at face value.
            rows[TRANSLATOR_APPROVED].add(seg)
        else:
            rows[EDITED].add(seg)
    _set_percentages(rows.values(), rows[TOTAL].segments)
    return list(rows.values())


def classify_match(score: float | None) -> str:
    if score is None:
        return NO_MATCH
    for label, lowest, _weight in MATCH_BANDS:
        if score >= lowest:
            return label
    return NO_MATCH


def analysis_report(segments: Sequence[Segment], matches: Mapping[int, TmMatch] | None = None) -> list[AnalysisRow]:
    """Weighted effort buckets by TM match score; every segment lands in exactly one bucket."""
    matches = matches or {}
    rows = {label: AnalysisRow(label, weight=ANALYSIS_WEIGHTS.get(label, 1.0)) for label in ANALYSIS_LABELS}
    repeated = _repeated_sources(segments)
    for seg in segments:
        if strip_html(seg.source) in repeated:
            label = REPETITION
        else:
            match = matches.get(seg.id)
            label = classify_match(match.score if match is not None else None)
        rows[label].add(seg)

    total = rows[TOTAL]
    for label, row in rows.items():
        if label == TOTAL:
            continue
        total.segments += row.segments
        total.source_words += row.source_words
        total.source_chars += row.source_chars
        total.source_tags += row.source_tags
        total.weighted_words += row.weighted_words
        total.weighted_chars += row.weighted_chars
    _set_percentages(rows.values(), total.segments)
    return list(rows.values())


def index_matches(matches: Iterable[TmMatch]) -> dict[int, TmMatch]:
    """Best match per segment id."""
    out: dict[int, TmMatch] = {}
    for match in matches:
        current = out.get(match.segment_id)
        if current is None or match.score > current.score:
            out[match.segment_id] = match
    return out


def generate_statistics_report(
    segments: Sequence[Segment], matches: Mapping[int, TmMatch] | None = None
) -> StatisticsReport:
    report = StatisticsReport(counts=counts_report(segments), analysis=analysis_report(segments, matches))
    _logger.info(
        "Statistics: %d segment(s), %d source word(s)", report.counts[0].segments, report.counts[0].source_words
    )
    return report


def translation_stats(
    segments: Sequence[Segment],
    terms: Sequence[Term] = (),
    matches: Mapping[int, TmMatch] | None = None,
) -> TranslationStats:
    term_res = [re.compile(rf"\b{re.escape(term.target)}\b", re.IGNORECASE) for term in terms if term.target]
    chars = chars_with_spaces = words = term_hits = 0
    for seg in segments:
        text = strip_html(seg.target)
        if not text.strip():
            continue
        chars += len(_WS_RE.sub("", text))
        normalized = _WS_RE.sub(" ", text.strip())
        chars_with_spaces += len(normalized)
        words += len(normalized.split())
        term_hits += sum(len(rx.findall(text)) for rx in term_res)

    scores = [m.score for m in (matches or {}).values()]
    return TranslationStats(
        char_count=chars,
        char_count_with_spaces=chars_with_spaces,
        word_count=words,
        terminology_hits=term_hits,
        tm_hits_fuzzy=sum(1 for s in scores if FUZZY_HIT_MIN <= s < 1.0),
        tm_hits_100=sum(1 for s in scores if s == 1.0),
    )
