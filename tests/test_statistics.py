from __future__ import annotations

import pytest

from linguacat.models import Evaluation, Segment, Term, TmMatch
from linguacat.statistics import (
    ANALYSIS_LABELS,
    EXCLUSIVE_COUNT_LABELS,
    NO_MATCH,
    classify_match,
    count_chars,
    count_tags,
    count_words,
    generate_statistics_report,
    index_matches,
    translation_stats,
)
from linguacat.tm import TM_EXACT_SOURCE

_FIELDS = ("segments", "source_words", "source_chars", "source_tags", "target_words", "target_chars", "target_tags")


def _segments() -> list[Segment]:
    return [
        Segment(id=1, source="<p>Hello world</p>", target=""),
        Segment(id=2, source="<p>Hello world</p>", target="<p>Szia világ</p>", evaluation=Evaluation(rating=5)),
        Segment(id=3, source="<p>One two three</p>", target="<p>Egy kettő három</p>", translation_source=TM_EXACT_SOURCE),
        Segment(id=4, source="<p><b>Bold</b> text</p>", target="<p>x</p>"),
    ]


def test_counting_helpers():
    assert count_words("<p><b>Bold</b> text</p>") == 2
    assert count_chars("<p><b>Bold</b> text</p>") == 9
    assert count_tags("<p><b>Bold</b> text</p>") == 4
    assert count_words("<p> </p>") == 0


def test_counts_report_buckets_partition_segments():
    report = generate_statistics_report(_segments())
    rows = {row.label: row for row in report.counts}

    assert rows["Total"].segments == 4
    assert rows["Repetition"].segments == 2
    assert rows["Untranslated"].segments == 1
    assert rows["Translator approved"].segments == 1
    assert rows["Pre-translated"].segments == 1
    assert rows["Edited"].segments == 1
    for field_name in _FIELDS:
        total = getattr(rows["Total"], field_name)
        assert sum(getattr(rows[label], field_name) for label in EXCLUSIVE_COUNT_LABELS) == total
    assert rows["Repetition"].percentage == pytest.approx(50.0)


def test_analysis_report_applies_weights():
    matches = {3: TmMatch(3, 1.0), 4: TmMatch(4, 0.9)}
    report = generate_statistics_report(_segments(), matches)
    rows = {row.label: row for row in report.analysis}

    assert [row.label for row in report.analysis] == list(ANALYSIS_LABELS)
    assert rows["Repetition"].segments == 2
    assert rows["Repetition"].weighted_words == pytest.approx(1.2)
    assert rows["100%"].weighted_words == pytest.approx(0.9)
    assert rows["85-94%"].weighted_words == pytest.approx(1.6)
    assert rows[NO_MATCH].segments == 0
    assert rows["Total"].segments == 4
    assert rows["Total"].source_words == 9
    assert rows["Total"].weighted_words == pytest.approx(3.7)
    assert sum(row.segments for label, row in rows.items() if label != "Total") == 4


def test_repetition_overrides_match_score():
    segments = [Segment(id=1, source="Same"), Segment(id=2, source="Same")]
    rows = {row.label: row for row in generate_statistics_report(segments, {1: TmMatch(1, 1.0)}).analysis}
    assert rows["Repetition"].segments == 2
    assert rows["100%"].segments == 0


@pytest.mark.parametrize(
    ("score", "label"),
    [
        (1.0, "100%"),
        (0.95, "95-99%"),
        (0.949, "85-94%"),
        (0.85, "85-94%"),
        (0.8, "75-84%"),
        (0.5, "50-74%"),
        (0.49, NO_MATCH),
        (None, NO_MATCH),
    ],
)
def test_classify_match_bands(score, label):
    assert classify_match(score) == label


def test_empty_project_has_zero_percentages():
    report = generate_statistics_report([])
    assert all(row.percentage == 0.0 for row in report.counts)
    assert report.to_dict()["analysis"][0]["label"] == "Total"


def test_index_matches_keeps_best_score():
    best = index_matches([TmMatch(1, 0.6), TmMatch(1, 0.9), TmMatch(2, 0.7)])
    assert best[1].score == 0.9
    assert set(best) == {1, 2}


def test_translation_stats():
    segments = [
        Segment(id=1, source="a", target="<p>A  repülőgép   szárnya</p>"),
        Segment(id=2, source="b", target=""),
    ]
    stats = translation_stats(
        segments,
        [Term(1, "aircraft", "Repülőgép")],
        {1: TmMatch(1, 1.0), 2: TmMatch(2, 0.75), 3: TmMatch(3, 0.5)},
    )

    assert stats.word_count == 3
    assert stats.char_count == len("Arepülőgépszárnya")
    assert stats.char_count_with_spaces == len("A repülőgép szárnya")
    assert stats.terminology_hits == 1
    assert stats.tm_hits_100 == 1
    assert stats.tm_hits_fuzzy == 1
