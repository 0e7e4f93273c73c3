from __future__ import annotations

import logging
from collections.abc import Sequence

import lxml.html

from .anchor_tree import (
    ANCHOR_ATTR,
    ELEMENT,
    ROOT,
    TEXT,
    AnchorTree,
    Node,
    first_content_node,
    import_node,
    parse_fragment,
    parse_html,
    strip_html,
    subtree_to_lxml,
    to_html,
)
from .models import Issue, Segment, Severity

NEEDS_TRANSLATION_CLASS = "needs-translation"

BLOCK_TAGS = frozenset(
    {
        "p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "ul", "ol", "table",
        "blockquote", "pre", "section", "article", "figure",
    }
)

_logger = logging.getLogger(__name__)


def _has_text(markup: str) -> bool:
    return bool(strip_html(markup).strip())


def _strip_anchor_attrs(tree: AnchorTree) -> AnchorTree:
    nodes = list(tree.nodes)
    changed = False
    for idx in tree.iter_indices():
        node = nodes[idx]
        if node.kind == ELEMENT and node.get(ANCHOR_ATTR) is not None:
            nodes[idx] = node.with_attr(ANCHOR_ATTR, None)
            changed = True
    return AnchorTree(tuple(nodes)) if changed else tree


def _add_class(node: Node, class_name: str) -> Node:
    classes = (node.get("class") or "").split()
    if class_name in classes:
        return node
    classes.append(class_name)
    return node.with_attr("class", " ".join(classes))


def strip_anchors(tree: AnchorTree) -> AnchorTree:
    """Remove every anchor attribute (final export carries no internal bookkeeping)."""
    return _strip_anchor_attrs(tree)


def reconstruct(
    tree: AnchorTree,
    segments: Sequence[Segment],
    *,
    final: bool = True,
    needs_translation_class: str = NEEDS_TRANSLATION_CLASS,
) -> AnchorTree:
    """Merge segment targets into a copy of `tree`.

    Translated anchors are replaced by the first top-level node of the target fragment.
    Untranslated anchors keep their source node; in preview mode (final=False) they keep
    the anchor attribute and get `needs_translation_class`. Segments without an anchor are
    dropped. All fragments are parsed before the copy is touched, so a parse failure leaves
    nothing half-applied.
    """
    anchors = tree.anchors()
    replacements: dict[int, tuple[AnchorTree, int]] = {}
    untranslated: list[int] = []
    for seg in segments:
        idx = anchors.get(seg.id)
        if idx is None:
            _logger.debug("Segment %s has no anchor in the source tree; dropped from output", seg.id)
            continue
        if _has_text(seg.target):
            fragment = _strip_anchor_attrs(parse_fragment(seg.target))
            first = first_content_node(fragment)
            if first is not None:
                replacements[idx] = (fragment, first)
                continue
        untranslated.append(idx)

    nodes = list(tree.nodes)
    for idx, (fragment, first) in replacements.items():
        nodes[idx] = import_node(fragment, first, nodes)
    for idx in untranslated:
        node = nodes[idx]
        nodes[idx] = node.with_attr(ANCHOR_ATTR, None) if final else _add_class(node, needs_translation_class)

    out = AnchorTree(tuple(nodes))
    return strip_anchors(out) if final else out


def reconstruct_flat(segments: Sequence[Segment]) -> AnchorTree:
    """Fallback without a source tree: target-if-translated-else-source, one block per segment."""
    nodes: list[Node] = [Node(kind=ROOT)]
    top: list[int] = []
    for seg in segments:
        content = seg.target if _has_text(seg.target) else seg.source
        fragment = _strip_anchor_attrs(parse_fragment(content))
        content_nodes = [
            i for i in fragment.top_level() if fragment.nodes[i].kind != TEXT or fragment.nodes[i].text.strip()
        ]
        if not content_nodes:
            continue
        first = fragment.nodes[content_nodes[0]]
        if len(content_nodes) == 1 and first.kind == ELEMENT and first.tag in BLOCK_TAGS:
            top.append(len(nodes))
            nodes.append(Node(kind=TEXT))  # slot filled once descendants are imported
            nodes[top[-1]] = import_node(fragment, content_nodes[0], nodes)
            continue
        wrapper = import_node(fragment, 0, nodes)
        top.append(len(nodes))
        nodes.append(Node(kind=ELEMENT, tag="div", children=wrapper.children))
    nodes[0] = Node(kind=ROOT, children=tuple(top))
    return AnchorTree(tuple(nodes))


def find_missing_anchors(tree: AnchorTree | None, segments: Sequence[Segment]) -> list[Issue]:
    if tree is None:
        return []
    anchors = tree.anchors()
    return [
        Issue(
            code="anchor_not_found",
            severity=Severity.INFO,
            message="Segment has no anchor in the source document; it is left out of the reconstructed output.",
            details={"segment_id": seg.id},
        )
        for seg in segments
        if seg.id not in anchors
    ]


def render_body_html(
    source_document_html: str | None,
    segments: Sequence[Segment],
    *,
    final: bool = True,
    needs_translation_class: str = NEEDS_TRANSLATION_CLASS,
) -> str:
    """Reconstructed body HTML, falling back to flat concatenation without a stored tree."""
    if not source_document_html:
        return to_html(reconstruct_flat(segments))
    tree = reconstruct(
        parse_html(source_document_html), segments, final=final, needs_translation_class=needs_translation_class
    )
    return to_html(tree)


def export_html(original_html: str, source_document_html: str | None, segments: Sequence[Segment]) -> str:
    """Full translated HTML page: original <head> and <html> attributes, reconstructed <body>."""
    doc = lxml.html.document_fromstring(original_html)
    body = doc.find("body")
    if body is None:
        body = lxml.html.Element("body")
        doc.append(body)
    for child in list(body):
        body.remove(child)

    if source_document_html:
        tree = reconstruct(parse_html(source_document_html), segments, final=True)
    else:
        tree = reconstruct_flat(segments)
    container = subtree_to_lxml(tree, 0)
    body.text = container.text
    for child in list(container):
        body.append(child)
    return "<!DOCTYPE html>\n" + lxml.html.tostring(doc, encoding="unicode", method="html")
