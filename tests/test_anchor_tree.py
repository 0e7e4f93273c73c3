from __future__ import annotations

from linguacat.anchor_tree import (
    ELEMENT,
    TEXT,
    first_content_node,
    find_tags,
    node_to_html,
    normalize_space,
    parse_fragment,
    parse_html,
    strip_html,
    to_html,
)


def test_parse_html_builds_arena_with_root_at_zero():
    tree = parse_html('<p data-lingua-id="1">Hello <b>big</b> world</p><p data-lingua-id="2">Bye</p>')

    assert len(tree.top_level()) == 2
    first = tree.nodes[tree.top_level()[0]]
    assert first.kind == ELEMENT
    assert first.tag == "p"
    assert tree.text_content() == "Hello big worldBye"
    assert tree.anchors() == {1: tree.top_level()[0], 2: tree.top_level()[1]}


def test_anchor_lookup_first_occurrence_wins_and_ignores_garbage():
    tree = parse_html(
        '<p data-lingua-id="1">a</p><p data-lingua-id="x">b</p><div><p data-lingua-id="1">c</p></div>'
    )

    idx = tree.find_anchor(1)
    assert idx == tree.top_level()[0]
    assert tree.text_content(idx) == "a"
    assert tree.find_anchor(2) is None
    assert set(tree.anchors()) == {1}


def test_to_html_round_trips_markup():
    markup = '<p data-lingua-id="1">Hello <b>big</b> world</p><!-- note --><ul><li>x</li></ul>'
    tree = parse_html(markup)

    assert to_html(tree) == markup
    assert parse_html(to_html(tree)).structure() == tree.structure()


def test_clone_is_independent_value():
    tree = parse_html("<p>a</p>")
    clone = tree.clone()

    assert clone == tree
    assert clone.structure() == tree.structure()


def test_empty_markup_gives_empty_tree():
    tree = parse_html("   ")
    assert tree.top_level() == ()
    assert to_html(tree) == ""


def test_first_content_node_skips_whitespace_text():
    fragment = parse_fragment("  <p>Szia</p><p>extra</p>")
    idx = first_content_node(fragment)

    assert idx is not None
    assert node_to_html(fragment, idx) == "<p>Szia</p>"

    plain = parse_fragment("just text")
    idx = first_content_node(plain)
    assert plain.nodes[idx].kind == TEXT
    assert first_content_node(parse_fragment("")) is None


def test_strip_html_and_helpers():
    assert strip_html("<p>Fish &amp; <i>chips</i></p>") == "Fish & chips"
    assert strip_html("plain") == "plain"
    assert strip_html(None) == ""
    assert normalize_space("  a \n\t b  ") == "a b"
    assert find_tags("<p>a<br/>b</p>") == ["<p>", "<br/>", "</p>"]
