from __future__ import annotations

import base64
import io
import zipfile

import pytest
from docx import Document
from PIL import Image

from linguacat.docx_export import (
    DOCUMENT_XML,
    StructuralRebuild,
    VerbatimPatch,
    decode_data_uri,
    get_docx_strategy,
    read_document_xml,
)
from linguacat.errors import InvalidFileType, ZipEntryMissing
from linguacat.models import Segment
from linguacat.project import SourceFile, new_project


def _make_docx(paragraphs: list[list[tuple[str, bool]]]) -> bytes:
    doc = Document()
    for parts in paragraphs:
        p = doc.add_paragraph()
        for text, bold in parts:
            run = p.add_run(text)
            run.bold = bold
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def _png_data_uri(width: int, height: int) -> str:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _texts(docx_bytes: bytes) -> list[str]:
    return [p.text for p in Document(io.BytesIO(docx_bytes)).paragraphs if p.text]


def test_verbatim_patch_consumes_duplicate_paragraphs_in_order():
    original = _make_docx(
        [
            [("Hello ", False), ("world", True)],
            [("Other", False)],
            [("Hello world", False)],
        ]
    )
    state = new_project(
        "Demo",
        [
            Segment(id=1, source="<p>Hello world</p>", target="<p>Szia világ</p>"),
            Segment(id=2, source="<p>Hello world</p>", target="<p>Helló világ</p>"),
            Segment(id=3, source="<p>Missing</p>", target="<p>Hiányzó</p>"),
        ],
    )

    out = VerbatimPatch(original=original).export(state)

    assert _texts(out) == ["Szia világ", "Other", "Helló világ"]
    with zipfile.ZipFile(io.BytesIO(original)) as src, zipfile.ZipFile(io.BytesIO(out)) as dst:
        assert src.namelist() == dst.namelist()
        for name in src.namelist():
            if name != DOCUMENT_XML:
                assert src.read(name) == dst.read(name)


def test_verbatim_patch_reads_embedded_source_file():
    original = _make_docx([[("Hello", False)]])
    state = new_project(
        "Demo",
        [Segment(id=1, source="<p>Hello</p>", target="<p>Szia</p>")],
        source_file=SourceFile.from_bytes("orig.docx", original),
    )

    assert _texts(get_docx_strategy("verbatim").export(state)) == ["Szia"]


def test_verbatim_patch_without_original_fails():
    state = new_project("Demo", [])
    with pytest.raises(InvalidFileType):
        VerbatimPatch().export(state)

    state.source_file = SourceFile.from_bytes("notes.txt", b"text")
    with pytest.raises(InvalidFileType):
        VerbatimPatch().export(state)


def test_read_document_xml_errors():
    with pytest.raises(InvalidFileType):
        read_document_xml(b"not a zip at all")

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("word/styles.xml", "<styles/>")
    with pytest.raises(ZipEntryMissing) as excinfo:
        read_document_xml(buf.getvalue())
    assert excinfo.value.field == DOCUMENT_XML


def test_structural_rebuild_maps_html_blocks():
    source_html = (
        '<h1 data-lingua-id="1">Title</h1>'
        '<p data-lingua-id="2">Plain <b>bold</b> text</p>'
        '<ul><li data-lingua-id="3">Item</li></ul>'
        "<table><tr><th>H</th><td>D</td></tr></table>"
        f'<p data-lingua-id="4"><img src="{_png_data_uri(900, 300)}"/></p>'
    )
    state = new_project(
        "Demo",
        [
            Segment(id=1, source="<h1>Title</h1>", target="<h1>Cím</h1>"),
            Segment(id=2, source="<p>Plain <b>bold</b> text</p>", target="<p>Sima <b>félkövér</b> szöveg</p>"),
            Segment(id=3, source="<p>Item</p>", target=""),
            Segment(id=4, source="<p>image</p>", target=""),
        ],
        source_document_html=source_html,
    )

    doc = Document(io.BytesIO(StructuralRebuild().export(state)))
    paragraphs = [p for p in doc.paragraphs if p.text or p.runs]

    assert paragraphs[0].text == "Cím"
    assert paragraphs[0].style.name == "Heading 1"
    assert paragraphs[1].text == "Sima félkövér szöveg"
    assert [r.text for r in paragraphs[1].runs if r.bold] == ["félkövér"]
    assert paragraphs[2].text == "Item"
    assert paragraphs[2].style.name == "List Bullet"

    table = doc.tables[0]
    assert table.cell(0, 0).text == "H"
    assert table.cell(0, 1).text == "D"
    assert len(table.cell(0, 0).paragraphs) == 1
    assert table.cell(0, 0)._tc.xpath("./w:tcPr/w:shd/@w:fill") == ["F2F2F2"]

    shape = doc.inline_shapes[0]
    assert shape.width == 450 * 9525
    assert shape.height == 150 * 9525


def test_structural_rebuild_without_tree_uses_segments():
    state = new_project(
        "Demo",
        [
            Segment(id=1, source="<p>One</p>", target="<p>Egy</p>"),
            Segment(id=2, source="<p>Two</p>", target=""),
        ],
    )

    assert _texts(get_docx_strategy("structural").export(state)) == ["Egy", "Two"]


def test_svg_images_keep_vector_part():
    svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="100" height="50"></svg>'
    uri = "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")

    out = StructuralRebuild().build_from_html(f'<p><img src="{uri}"/></p>')

    with zipfile.ZipFile(io.BytesIO(out)) as zf:
        svg_parts = [name for name in zf.namelist() if name.endswith(".svg")]
        assert svg_parts
        assert zf.read(svg_parts[0]) == svg
        assert b"svgBlip" in zf.read(DOCUMENT_XML)
    assert Document(io.BytesIO(out)).inline_shapes[0].width == 100 * 9525


def test_decode_data_uri():
    image = decode_data_uri(_png_data_uri(20, 10))
    assert image is not None
    assert (image.kind, image.width, image.height) == ("png", 20, 10)

    svg = base64.b64encode(b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 40 30"/>').decode("ascii")
    image = decode_data_uri(f"data:image/svg+xml;base64,{svg}")
    assert (image.kind, image.width, image.height) == ("svg", 40, 30)

    assert decode_data_uri("https://example.com/a.png") is None


def test_unknown_strategy_is_rejected():
    with pytest.raises(ValueError, match="Invalid DOCX strategy"):
        get_docx_strategy("pdf")
