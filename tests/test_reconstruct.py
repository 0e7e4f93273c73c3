from __future__ import annotations

from linguacat.anchor_tree import parse_html, to_html
from linguacat.models import Segment, Severity
from linguacat.reconstruct import (
    export_html,
    find_missing_anchors,
    reconstruct,
    reconstruct_flat,
    render_body_html,
)

SOURCE_HTML = '<p data-lingua-id="1">Hello</p><p data-lingua-id="2">World</p>'


def _segments(first_target: str = "<p>Szia</p>", second_target: str = "") -> list[Segment]:
    return [
        Segment(id=1, source="<p>Hello</p>", target=first_target),
        Segment(id=2, source="<p>World</p>", target=second_target),
    ]


def test_final_output_replaces_translated_and_strips_anchors():
    tree = parse_html(SOURCE_HTML)

    out = reconstruct(tree, _segments(), final=True)

    assert to_html(out) == "<p>Szia</p><p>World</p>"


def test_preview_marks_untranslated_anchors():
    out = to_html(reconstruct(parse_html(SOURCE_HTML), _segments(), final=False))

    assert out.startswith("<p>Szia</p>")
    assert 'data-lingua-id="2"' in out
    assert 'class="needs-translation"' in out
    assert ">World</p>" in out


def test_reconstruct_is_pure_and_idempotent():
    tree = parse_html(SOURCE_HTML)
    before = tree.structure()
    segments = _segments("<p>Szia <b>nagy</b></p>", "<p>Világ</p>")

    first = reconstruct(tree, segments)
    second = reconstruct(tree, segments)

    assert tree.structure() == before
    assert first.structure() == second.structure()
    assert to_html(first) == "<p>Szia <b>nagy</b></p><p>Világ</p>"


def test_target_text_without_block_replaces_anchor_node():
    out = reconstruct(parse_html(SOURCE_HTML), _segments("Szia", ""))
    assert to_html(out) == "Szia<p>World</p>"


def test_only_first_top_level_node_of_target_is_used():
    out = reconstruct(parse_html(SOURCE_HTML), _segments("<p>Szia</p><p>extra</p>", ""))
    assert to_html(out) == "<p>Szia</p><p>World</p>"


def test_anchors_inside_targets_do_not_leak():
    out = to_html(reconstruct(parse_html(SOURCE_HTML), _segments('<p data-lingua-id="9">Szia</p>', "")))
    assert "data-lingua-id" not in out


def test_segments_without_anchor_are_dropped_and_reported():
    tree = parse_html(SOURCE_HTML)
    segments = [*_segments(), Segment(id=3, source="<p>Lost</p>", target="<p>Elveszett</p>")]

    out = to_html(reconstruct(tree, segments))
    issues = find_missing_anchors(tree, segments)

    assert "Elveszett" not in out
    assert len(issues) == 1
    assert issues[0].code == "anchor_not_found"
    assert issues[0].severity is Severity.INFO
    assert issues[0].details == {"segment_id": 3}


def test_flat_fallback_concatenates_blocks():
    segments = [
        Segment(id=1, source="<p>A</p>", target="<p>B</p>"),
        Segment(id=2, source="<p>C</p>", target=""),
        Segment(id=3, source="x <b>y</b>", target=""),
        Segment(id=4, source="<p> </p>", target=""),
    ]

    assert to_html(reconstruct_flat(segments)) == "<p>B</p><p>C</p><div>x <b>y</b></div><p> </p>"


def test_render_body_html_switches_on_stored_tree():
    segments = _segments()
    assert render_body_html(SOURCE_HTML, segments) == "<p>Szia</p><p>World</p>"
    assert render_body_html(None, segments) == "<p>Szia</p><p>World</p>"


def test_export_html_keeps_head_and_html_attributes():
    original = '<html lang="hu"><head><title>T</title></head><body><p>old</p></body></html>'

    page = export_html(original, SOURCE_HTML, _segments())

    assert page.startswith("<!DOCTYPE html>")
    assert '<html lang="hu">' in page
    assert "<title>T</title>" in page
    assert "<p>Szia</p><p>World</p>" in page
    assert "old" not in page
