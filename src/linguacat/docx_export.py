from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import zipfile
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any, Protocol

from docx import Document
from docx.image.exceptions import UnrecognizedImageError
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.opc.part import Part
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Emu
from lxml import etree
from PIL import Image, UnidentifiedImageError

from .anchor_tree import normalize_space, parse_html, strip_html, subtree_to_lxml
from .errors import InvalidFileType, ZipEntryMissing
from .models import Segment
from .project import ProjectState
from .reconstruct import reconstruct, reconstruct_flat

DOCUMENT_XML = "word/document.xml"
W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
W_P = f"{{{W_NS}}}p"
W_T = f"{{{W_NS}}}t"
XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"

SVG_NS = "http://schemas.microsoft.com/office/drawing/2016/SVG/main"
SVG_EXT_URI = "{96DAC541-7B7A-43D3-8B79-37D633B846F1}"
# 1x1 transparent PNG shown by renderers without SVG support.
SVG_FALLBACK_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

EMU_PER_PX = 9525
FALLBACK_IMAGE_SIZE = (450, 300)
TH_SHADING = "F2F2F2"

_DATA_URI_RE = re.compile(r"^data:image/(jpeg|jpg|png|gif|bmp|svg\+xml);base64,(.*)$", re.DOTALL | re.IGNORECASE)
_SVG_LENGTH_RE = re.compile(r"^\s*([\d.]+)\s*(px)?\s*$")
_HEADING_RE = re.compile(r"^h([1-6])$")

_INLINE_FLAGS = {
    "strong": "bold",
    "b": "bold",
    "em": "italic",
    "i": "italic",
    "u": "underline",
    "sup": "superscript",
    "sub": "subscript",
}
_BLOCK_TAGS = frozenset(
    {
        "p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "ul", "ol", "table",
        "blockquote", "pre", "section", "article", "header", "footer", "figure", "main",
    }
)
_LIST_STYLES = {"ul": "List Bullet", "ol": "List Number"}

_logger = logging.getLogger(__name__)


class DocxStrategy(Protocol):
    name: str

    def export(self, project: ProjectState) -> bytes:
        ...


# --- structural rebuild ----------------------------------------------------------


@dataclass(frozen=True)
class _ImageData:
    data: bytes
    kind: str  # 'png' | 'jpeg' | 'gif' | 'bmp' | 'svg'
    width: int
    height: int


@dataclass(frozen=True)
class _RunSpec:
    text: str = ""
    is_break: bool = False
    image: _ImageData | None = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    superscript: bool = False
    subscript: bool = False


def _svg_size(data: bytes) -> tuple[int, int]:
    try:
        root = etree.fromstring(data, parser=etree.XMLParser(resolve_entities=False, no_network=True))
    except etree.XMLSyntaxError:
        return FALLBACK_IMAGE_SIZE
    dims: list[float] = []
    for attr in ("width", "height"):
        match = _SVG_LENGTH_RE.match(root.get(attr) or "")
        if match:
            dims.append(float(match.group(1)))
    if len(dims) == 2 and all(dims):
        return int(dims[0]), int(dims[1])
    view_box = (root.get("viewBox") or "").replace(",", " ").split()
    if len(view_box) == 4:
        try:
            width, height = float(view_box[2]), float(view_box[3])
        except ValueError:
            return FALLBACK_IMAGE_SIZE
        if width > 0 and height > 0:
            return int(width), int(height)
    return FALLBACK_IMAGE_SIZE


def _image_size(data: bytes, kind: str) -> tuple[int, int]:
    """Natural pixel size of an embedded image, or the fallback size when it cannot be read."""
    if kind == "svg":
        return _svg_size(data)
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError):
        return FALLBACK_IMAGE_SIZE
    return (width, height) if width and height else FALLBACK_IMAGE_SIZE


def decode_data_uri(src: str | None) -> _ImageData | None:
    match = _DATA_URI_RE.match((src or "").strip())
    if not match:
        return None
    kind = match.group(1).lower()
    kind = {"jpg": "jpeg", "svg+xml": "svg"}.get(kind, kind)
    try:
        data = base64.b64decode(match.group(2).strip(), validate=False)
    except (binascii.Error, ValueError):
        _logger.warning("Skipping image with invalid base64 payload")
        return None
    if not data:
        return None
    width, height = _image_size(data, kind)
    return _ImageData(data=data, kind=kind, width=width, height=height)


def _is_block(el: Any) -> bool:
    return isinstance(el.tag, str) and el.tag.lower() in _BLOCK_TAGS


def _direct_rows(table_el: Any) -> list[Any]:
    rows: list[Any] = []
    for child in table_el:
        tag = child.tag.lower() if isinstance(child.tag, str) else ""
        if tag == "tr":
            rows.append(child)
        elif tag in ("thead", "tbody", "tfoot"):
            rows.extend(tr for tr in child if isinstance(tr.tag, str) and tr.tag.lower() == "tr")
    return rows


class StructuralRebuild:
    """Rebuild a fresh .docx from the reconstructed HTML body."""

    name = "structural"

    def __init__(self, max_image_width: int = 450) -> None:
        self.max_image_width = int(max_image_width)

    def export(self, project: ProjectState) -> bytes:
        if project.source_document_html:
            tree = reconstruct(parse_html(project.source_document_html), project.segments, final=True)
        else:
            tree = reconstruct_flat(project.segments)
        return self.build(subtree_to_lxml(tree, 0))

    def build_from_html(self, body_html: str) -> bytes:
        return self.build(subtree_to_lxml(parse_html(body_html), 0))

    def build(self, container: Any) -> bytes:
        doc = Document()
        self._emit_children(doc, container)
        buf = io.BytesIO()
        doc.save(buf)
        return buf.getvalue()

    # block level

    def _emit_children(self, target: Any, parent: Any, style: str | None = None) -> None:
        """Emit the children of `parent`; loose inline content between blocks becomes its own paragraph."""
        pending: list[_RunSpec] = []
        if parent.text:
            pending.append(_RunSpec(text=parent.text))
        for child in parent:
            if isinstance(child.tag, str) and _is_block(child):
                self._emit_paragraph(target, pending, style)
                pending = []
                self._emit_block(target, child, style)
            else:
                self._collect_runs(child, _RunSpec(), pending, with_tail=False)
            if child.tail:
                pending.append(_RunSpec(text=child.tail))
        self._emit_paragraph(target, pending, style)

    def _emit_block(self, target: Any, el: Any, inherited_style: str | None) -> None:
        tag = el.tag.lower()
        if tag == "table":
            self._emit_table(target, el)
            return
        heading = _HEADING_RE.match(tag)
        if heading:
            self._emit_paragraph(target, self._runs_of(el), f"Heading {heading.group(1)}")
            return
        if tag in _LIST_STYLES:
            for item in el:
                if isinstance(item.tag, str) and item.tag.lower() == "li":
                    self._emit_children(target, item, _LIST_STYLES[tag])
                elif isinstance(item.tag, str) and _is_block(item):
                    self._emit_block(target, item, inherited_style)
            return
        if tag == "li":
            self._emit_children(target, el, inherited_style or "List Bullet")
            return
        if any(isinstance(child.tag, str) and _is_block(child) for child in el):
            self._emit_children(target, el, inherited_style)
            return
        self._emit_paragraph(target, self._runs_of(el), inherited_style)

    def _emit_table(self, target: Any, table_el: Any) -> None:
        rows = _direct_rows(table_el)
        grid = [[c for c in tr if isinstance(c.tag, str) and c.tag.lower() in ("td", "th")] for tr in rows]
        n_cols = max((len(cells) for cells in grid), default=0)
        if not grid or n_cols == 0:
            return
        table = target.add_table(rows=len(grid), cols=n_cols)
        table.style = "Table Grid"
        self._set_full_width(table)
        for r, cells in enumerate(grid):
            for c, html_cell in enumerate(cells):
                docx_cell = table.cell(r, c)
                self._emit_children(docx_cell, html_cell)
                self._drop_leading_empty_paragraph(docx_cell)
                if html_cell.tag.lower() == "th":
                    self._shade(docx_cell, TH_SHADING)

    @staticmethod
    def _set_full_width(table: Any) -> None:
        tbl_pr = table._tbl.tblPr
        tbl_w = tbl_pr.find(qn("w:tblW"))
        if tbl_w is None:
            tbl_w = OxmlElement("w:tblW")
            tbl_pr.append(tbl_w)
        tbl_w.set(qn("w:type"), "pct")
        tbl_w.set(qn("w:w"), "5000")

    @staticmethod
    def _shade(docx_cell: Any, fill: str) -> None:
        tc_pr = docx_cell._tc.get_or_add_tcPr()
        shd = OxmlElement("w:shd")
        shd.set(qn("w:val"), "clear")
        shd.set(qn("w:color"), "auto")
        shd.set(qn("w:fill"), fill)
        tc_pr.append(shd)

    @staticmethod
    def _drop_leading_empty_paragraph(docx_cell: Any) -> None:
        # A new cell starts with one empty paragraph; keep it only if nothing else was added.
        paragraphs = docx_cell.paragraphs
        tc = docx_cell._tc
        block_count = len(tc.xpath("./w:p | ./w:tbl"))
        if block_count > 1 and paragraphs and not paragraphs[0].runs:
            tc.remove(paragraphs[0]._p)

    # inline level

    def _runs_of(self, el: Any) -> list[_RunSpec]:
        out: list[_RunSpec] = []
        if el.text:
            out.append(_RunSpec(text=el.text))
        for child in el:
            self._collect_runs(child, _RunSpec(), out, with_tail=True)
        return out

    def _collect_runs(self, el: Any, fmt: _RunSpec, out: list[_RunSpec], *, with_tail: bool) -> None:
        if not isinstance(el.tag, str):  # comments
            if with_tail and el.tail:
                out.append(replace(fmt, text=el.tail))
            return
        tag = el.tag.lower()
        if tag == "br":
            out.append(_RunSpec(is_break=True))
        elif tag == "img":
            image = decode_data_uri(el.get("src"))
            if image is not None:
                out.append(_RunSpec(image=image))
        else:
            flag = _INLINE_FLAGS.get(tag)
            inner = replace(fmt, **{flag: True}) if flag else fmt
            if el.text:
                out.append(replace(inner, text=el.text))
            for child in el:
                self._collect_runs(child, inner, out, with_tail=True)
        if with_tail and el.tail:
            out.append(replace(fmt, text=el.tail))

    def _emit_paragraph(self, target: Any, runs: Sequence[_RunSpec], style: str | None) -> None:
        has_image = any(spec.image is not None for spec in runs)
        has_text = any(spec.text.strip() for spec in runs)
        if not (has_image or has_text):
            return
        paragraph = target.add_paragraph(style=style)
        for spec in runs:
            if spec.image is not None:
                self._add_image(paragraph, spec.image)
                continue
            run = paragraph.add_run()
            if spec.is_break:
                run.add_break()
                continue
            run.text = spec.text
            font = run.font
            if spec.bold:
                font.bold = True
            if spec.italic:
                font.italic = True
            if spec.underline:
                font.underline = True
            if spec.superscript:
                font.superscript = True
            if spec.subscript:
                font.subscript = True

    def _add_image(self, paragraph: Any, image: _ImageData) -> None:
        width = min(image.width, self.max_image_width)
        height = width / image.width * image.height
        extent = {"width": Emu(int(width * EMU_PER_PX)), "height": Emu(int(height * EMU_PER_PX))}
        run = paragraph.add_run()
        if image.kind == "svg":
            run.add_picture(io.BytesIO(SVG_FALLBACK_PNG), **extent)
            self._attach_svg(run, image.data)
            return
        try:
            run.add_picture(io.BytesIO(image.data), **extent)
        except UnrecognizedImageError:
            _logger.warning("Skipping embedded %s image that python-docx cannot read", image.kind)

    @staticmethod
    def _attach_svg(run: Any, svg: bytes) -> None:
        """Add the SVG as a second blip on the picture the fallback PNG created."""
        part = run.part
        package = part.package
        svg_part = Part(package.next_partname("/word/media/image%d.svg"), "image/svg+xml", svg, package)
        rid = part.relate_to(svg_part, RT.IMAGE)
        blip = run._r.xpath(".//a:blip")[-1]
        ext_lst = etree.SubElement(blip, qn("a:extLst"))
        ext = etree.SubElement(ext_lst, qn("a:ext"))
        ext.set("uri", SVG_EXT_URI)
        svg_blip = etree.SubElement(ext, f"{{{SVG_NS}}}svgBlip", nsmap={"asvg": SVG_NS})
        svg_blip.set(qn("r:embed"), rid)


# --- verbatim text patch ------------------------------------------------------------


def _open_docx(docx_bytes: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(docx_bytes))
    except zipfile.BadZipFile as exc:
        raise InvalidFileType("Not a DOCX file: the archive cannot be opened", field="docx", raw=docx_bytes[:8]) from exc


def read_document_xml(docx_bytes: bytes) -> bytes:
    with _open_docx(docx_bytes) as zf:
        try:
            return zf.read(DOCUMENT_XML)
        except KeyError as exc:
            raise ZipEntryMissing(f"{DOCUMENT_XML} not found in the DOCX archive", field=DOCUMENT_XML) from exc


def paragraph_text(p: Any) -> str:
    return "".join(t.text or "" for t in p.iter(W_T))


def build_paragraph_map(root: Any) -> dict[str, deque[Any]]:
    """Normalized paragraph text -> paragraphs with that text, in document order."""
    out: dict[str, deque[Any]] = {}
    for p in root.iter(W_P):
        text = normalize_space(paragraph_text(p))
        if text:
            out.setdefault(text, deque()).append(p)
    return out


def patch_document_xml(xml: bytes, segments: Sequence[Segment]) -> tuple[bytes, int]:
    """Overwrite paragraph text with segment targets, matching paragraphs by source text.

    Each paragraph is used at most once; repeated source text consumes paragraphs in order.
    Returns the new XML and the number of patched paragraphs.
    """
    try:
        root = etree.fromstring(xml, parser=etree.XMLParser(resolve_entities=False, huge_tree=True))
    except etree.XMLSyntaxError as exc:
        raise InvalidFileType(f"{DOCUMENT_XML} is not well-formed XML: {exc}", field=DOCUMENT_XML) from exc

    by_text = build_paragraph_map(root)
    patched = 0
    for seg in segments:
        source = normalize_space(strip_html(seg.source))
        target = strip_html(seg.target).strip()
        if not source or not target:
            continue
        candidates = by_text.get(source)
        if not candidates:
            _logger.debug("Segment %s: no unused paragraph with matching source text", seg.id)
            continue
        paragraph = candidates.popleft()
        runs = list(paragraph.iter(W_T))
        if not runs:
            continue
        runs[0].text = target
        if target != target.strip(" ") or "  " in target:
            runs[0].set(XML_SPACE, "preserve")
        for extra in runs[1:]:
            extra.text = ""
        patched += 1

    out = etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)
    return out, patched


def repack_docx(docx_bytes: bytes, new_document_xml: bytes) -> bytes:
    """Copy the archive, replacing only the main document part."""
    buf = io.BytesIO()
    with _open_docx(docx_bytes) as src:
        if DOCUMENT_XML not in src.namelist():
            raise ZipEntryMissing(f"{DOCUMENT_XML} not found in the DOCX archive", field=DOCUMENT_XML)
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as dst:
            for info in src.infolist():
                data = new_document_xml if info.filename == DOCUMENT_XML else src.read(info)
                dst.writestr(info, data)
    return buf.getvalue()


class VerbatimPatch:
    """Patch translations into the original .docx, keeping every other part untouched."""

    name = "verbatim"

    def __init__(self, original: bytes | None = None) -> None:
        self.original = original

    def _original_bytes(self, project: ProjectState) -> bytes:
        if self.original is not None:
            return self.original
        source = project.source_file
        if source is None:
            raise InvalidFileType(
                "Verbatim DOCX export needs the original .docx (project has no sourceFile)", field="sourceFile"
            )
        if not source.name.lower().endswith(".docx"):
            raise InvalidFileType(f"Source file {source.name!r} is not a .docx", field="sourceFile.name", raw=source.name)
        return source.decode()

    def export(self, project: ProjectState) -> bytes:
        original = self._original_bytes(project)
        new_xml, patched = patch_document_xml(read_document_xml(original), project.segments)
        _logger.info("Verbatim DOCX export: %d paragraph(s) patched", patched)
        return repack_docx(original, new_xml)


def get_docx_strategy(name: str, *, max_image_width: int = 450, original: bytes | None = None) -> DocxStrategy:
    key = (name or "").strip().lower()
    if key == StructuralRebuild.name:
        return StructuralRebuild(max_image_width=max_image_width)
    if key == VerbatimPatch.name:
        return VerbatimPatch(original=original)
    raise ValueError(f"Invalid DOCX strategy: {name!r}. Allowed: structural, verbatim")
