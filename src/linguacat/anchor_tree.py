from __future__ import annotations

import html as html_lib
import re
from collections.abc import Iterator
from dataclasses import dataclass, replace
from typing import Any

import lxml.html
from lxml import etree

# Attribute linking a source-tree node to a segment id (stringified integer).
ANCHOR_ATTR = "data-lingua-id"

TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")

ELEMENT = "element"
TEXT = "text"
COMMENT = "comment"
ROOT = "root"


@dataclass(frozen=True)
class Node:
    kind: str
    tag: str = ""
    attrs: tuple[tuple[str, str], ...] = ()
    children: tuple[int, ...] = ()
    text: str = ""

    def get(self, name: str, default: str | None = None) -> str | None:
        for key, value in self.attrs:
            if key == name:
                return value
        return default

    def with_attr(self, name: str, value: str | None) -> Node:
        """Return a copy with `name` set to `value` (removed when value is None)."""
        attrs = [(k, v) for k, v in self.attrs if k != name]
        if value is not None:
            attrs.append((name, value))
        return replace(self, attrs=tuple(attrs))


@dataclass(frozen=True)
class AnchorTree:
    """Parsed document held as an arena: nodes reference children by index.

    Index 0 is always the root container. Nodes are immutable, so cloning a tree is
    copying the tuple, and rewriting a node means storing a new Node at its index.
    Replaced subtrees may leave unreachable entries behind; every traversal starts at
    the root.
    """

    nodes: tuple[Node, ...]

    @property
    def root(self) -> Node:
        return self.nodes[0]

    def clone(self) -> AnchorTree:
        return AnchorTree(tuple(self.nodes))

    def top_level(self) -> tuple[int, ...]:
        return self.root.children

    def iter_indices(self, start: int = 0) -> Iterator[int]:
        """Depth-first, document-order walk of reachable node indices."""
        stack = [start]
        while stack:
            idx = stack.pop()
            yield idx
            stack.extend(reversed(self.nodes[idx].children))

    def text_content(self, idx: int = 0) -> str:
        parts: list[str] = []
        for i in self.iter_indices(idx):
            node = self.nodes[i]
            if node.kind == TEXT:
                parts.append(node.text)
        return "".join(parts)

    def anchors(self) -> dict[int, int]:
        """Map segment id -> node index. The first node in document order wins."""
        out: dict[int, int] = {}
        for idx in self.iter_indices():
            node = self.nodes[idx]
            if node.kind != ELEMENT:
                continue
            raw = node.get(ANCHOR_ATTR)
            if raw is None:
                continue
            try:
                seg_id = int(raw.strip())
            except ValueError:
                continue
            out.setdefault(seg_id, idx)
        return out

    def find_anchor(self, segment_id: int) -> int | None:
        return self.anchors().get(int(segment_id))

    def structure(self, idx: int = 0) -> tuple[Any, ...]:
        """Index-free nested tuple view, equal for structurally identical trees."""
        node = self.nodes[idx]
        return (
            node.kind,
            node.tag,
            tuple(sorted(node.attrs)),
            node.text,
            tuple(self.structure(child) for child in node.children),
        )


def _append(nodes: list[Node], node: Node) -> int:
    nodes.append(node)
    return len(nodes) - 1


def _from_lxml(el: Any, nodes: list[Node]) -> int:
    """Append `el` (and its subtree, without its tail) to the arena and return its index."""
    if isinstance(el, etree._Comment):
        return _append(nodes, Node(kind=COMMENT, text=el.text or ""))

    idx = _append(nodes, Node(kind=ELEMENT))
    children: list[int] = []
    if el.text:
        children.append(_append(nodes, Node(kind=TEXT, text=el.text)))
    for child in el:
        if not isinstance(child, etree._ProcessingInstruction):
            children.append(_from_lxml(child, nodes))
        if child.tail:
            children.append(_append(nodes, Node(kind=TEXT, text=child.tail)))
    attrs = tuple((str(k), str(v)) for k, v in el.attrib.items())
    nodes[idx] = Node(kind=ELEMENT, tag=str(el.tag).lower(), attrs=attrs, children=tuple(children))
    return idx


def _tree_from_container(container: Any) -> AnchorTree:
    nodes: list[Node] = [Node(kind=ROOT)]
    children: list[int] = []
    if container.text:
        children.append(_append(nodes, Node(kind=TEXT, text=container.text)))
    for child in container:
        if not isinstance(child, etree._ProcessingInstruction):
            children.append(_from_lxml(child, nodes))
        if child.tail:
            children.append(_append(nodes, Node(kind=TEXT, text=child.tail)))
    nodes[0] = Node(kind=ROOT, children=tuple(children))
    return AnchorTree(tuple(nodes))


def parse_html(markup: str | None) -> AnchorTree:
    """Parse an HTML body fragment (e.g. a stored source document) into an AnchorTree."""
    if not markup or not markup.strip():
        return AnchorTree((Node(kind=ROOT),))
    container = lxml.html.fragment_fromstring(markup, create_parent="div")
    return _tree_from_container(container)


def parse_fragment(markup: str | None) -> AnchorTree:
    """Parse a segment's rich-text fragment. Same representation as a document tree."""
    return parse_html(markup)


def first_content_node(tree: AnchorTree) -> int | None:
    """Index of the first top-level node that is not whitespace-only text."""
    for idx in tree.top_level():
        node = tree.nodes[idx]
        if node.kind == TEXT and not node.text.strip():
            continue
        return idx
    return None


def import_node(src: AnchorTree, src_idx: int, dst: list[Node]) -> Node:
    """Copy the descendants of `src_idx` into `dst` and return the re-indexed node itself.

    The returned node is not appended, so callers can store it at an existing index.
    """
    node = src.nodes[src_idx]
    children = tuple(_append(dst, import_node(src, child, dst)) for child in node.children)
    return replace(node, children=children)


def _to_lxml(tree: AnchorTree, idx: int, parent: Any) -> None:
    node = tree.nodes[idx]
    if node.kind == TEXT:
        last = parent[-1] if len(parent) else None
        if last is None:
            parent.text = (parent.text or "") + node.text
        else:
            last.tail = (last.tail or "") + node.text
        return
    if node.kind == COMMENT:
        parent.append(etree.Comment(node.text))
        return
    el = etree.SubElement(parent, node.tag or "div")
    for key, value in node.attrs:
        el.set(key, value)
    for child in node.children:
        _to_lxml(tree, child, el)


def subtree_to_lxml(tree: AnchorTree, idx: int = 0) -> Any:
    """Build an lxml element for node `idx`; the root becomes a <div> container."""
    node = tree.nodes[idx]
    if node.kind == ROOT:
        container = etree.Element("div")
        for child in node.children:
            _to_lxml(tree, child, container)
        return container
    holder = etree.Element("div")
    _to_lxml(tree, idx, holder)
    return holder[0] if len(holder) else holder


def _inner_html(container: Any) -> str:
    parts = [html_lib.escape(container.text or "", quote=False)]
    for child in container:
        parts.append(lxml.html.tostring(child, encoding="unicode", method="html", with_tail=True))
    return "".join(parts)


def to_html(tree: AnchorTree) -> str:
    """Serialize the tree's top-level content (body inner HTML)."""
    return _inner_html(subtree_to_lxml(tree, 0))


def node_to_html(tree: AnchorTree, idx: int) -> str:
    node = tree.nodes[idx]
    if node.kind == TEXT:
        return html_lib.escape(node.text, quote=False)
    if node.kind == ROOT:
        return to_html(tree)
    return lxml.html.tostring(subtree_to_lxml(tree, idx), encoding="unicode", method="html", with_tail=False)


def strip_html(markup: str | None) -> str:
    """Plain text content of a rich-text fragment (tags dropped, entities decoded)."""
    if not markup:
        return ""
    if "<" not in markup and "&" not in markup:
        return markup
    return parse_fragment(markup).text_content()


def normalize_space(text: str) -> str:
    return _SPACE_RE.sub(" ", text or "").strip()


def find_tags(markup: str | None) -> list[str]:
    return TAG_RE.findall(markup or "")
