from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from lxml import etree

from .anchor_tree import strip_html
from .errors import MalformedInterchangeFile
from .models import Segment, Term, TmMatch, TranslationUnit
from .project import APP_NAME

XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"

_logger = logging.getLogger(__name__)


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


# --- line-delimited JSON -----------------------------------------------------


def _iter_jsonl(text: str, kind: str) -> Iterable[dict[str, Any]]:
    for line_no, line in enumerate((text or "").split("\n"), start=1):
        if not line.strip():
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as exc:
            raise MalformedInterchangeFile(
                f"Invalid {kind} line {line_no}: {exc.msg}", field=f"line {line_no}", raw=line
            ) from exc
        if not isinstance(obj, dict):
            raise MalformedInterchangeFile(
                f"Invalid {kind} line {line_no}: expected a JSON object", field=f"line {line_no}", raw=line
            )
        yield obj


def parse_jsonl_units(text: str) -> list[TranslationUnit]:
    return [
        TranslationUnit(source=str(obj.get("source", "")), target=str(obj.get("target", "")))
        for obj in _iter_jsonl(text, "translation unit")
    ]


def parse_term_db(text: str, first_id: int = 1) -> list[Term]:
    """Terms from JSONL; ids are assigned in file order starting at `first_id`."""
    terms: list[Term] = []
    for offset, obj in enumerate(_iter_jsonl(text, "term")):
        definition = obj.get("definition")
        terms.append(
            Term(
                id=int(first_id) + offset,
                source=str(obj.get("source", "")),
                target=str(obj.get("target", "")),
                definition=str(definition) if definition else None,
            )
        )
    return terms


def dump_jsonl(rows: Iterable[dict[str, Any]]) -> str:
    return "\n".join(json.dumps(row, ensure_ascii=False) for row in rows)


def export_term_db(terms: Iterable[Term]) -> str:
    rows: list[dict[str, Any]] = []
    for term in terms:
        row: dict[str, Any] = {"source": term.source, "target": term.target}
        if term.definition:
            row["definition"] = term.definition
        rows.append(row)
    return dump_jsonl(rows)


def translation_units_from_segments(segments: Iterable[Segment]) -> list[TranslationUnit]:
    """Plain-text units for every segment that has a translation."""
    units: list[TranslationUnit] = []
    for seg in segments:
        target = strip_html(seg.target)
        if not target.strip():
            continue
        units.append(TranslationUnit(source=strip_html(seg.source), target=target))
    return units


def export_translation_memory(segments: Iterable[Segment]) -> str:
    return dump_tm_units(translation_units_from_segments(segments))


def dump_tm_units(units: Iterable[TranslationUnit]) -> str:
    return dump_jsonl({"source": u.source, "target": u.target} for u in units)


def merge_terms(existing: Sequence[Term], new: Iterable[Term]) -> list[Term]:
    """Append terms whose source is not yet known (case-insensitive); first occurrence wins."""
    seen = {term.source.lower() for term in existing}
    merged = list(existing)
    for term in new:
        key = term.source.lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(term)
    return merged


# --- TMX / TBX -----------------------------------------------------------------


def _parse_xml(text: str, kind: str) -> etree._Element | None:
    if not (text or "").strip():
        return None
    try:
        return etree.fromstring(text.encode("utf-8"), parser=_xml_parser())
    except etree.XMLSyntaxError as exc:
        raise MalformedInterchangeFile(f"Invalid {kind} document: {exc}", field=kind, raw=text[:200]) from exc


def _text_of(el: etree._Element | None) -> str:
    return "".join(el.itertext()) if el is not None else ""


def _tostring(root: etree._Element) -> str:
    return etree.tostring(root, encoding="UTF-8", xml_declaration=True, pretty_print=True).decode("utf-8")


def serialize_tmx(units: Iterable[TranslationUnit], source_lang: str, target_lang: str) -> str:
    root = etree.Element("tmx", version="1.4")
    etree.SubElement(
        root,
        "header",
        creationtool=APP_NAME,
        datatype="xml",
        segtype="sentence",
        adminlang="en",
        srclang=source_lang,
    )
    body = etree.SubElement(root, "body")
    for unit in units:
        tu = etree.SubElement(body, "tu")
        for lang, text in ((source_lang, unit.source), (target_lang, unit.target)):
            tuv = etree.SubElement(tu, "tuv", {XML_LANG: lang})
            etree.SubElement(tuv, "seg").text = text
    return _tostring(root)


def parse_tmx(text: str) -> list[TranslationUnit]:
    """Units from TMX; the first <tuv> is the source and the second the target."""
    root = _parse_xml(text, "TMX")
    if root is None:
        return []
    units: list[TranslationUnit] = []
    for tu in root.iter("{*}tu"):
        tuvs = tu.findall("{*}tuv")
        if len(tuvs) < 2:
            continue
        source = _text_of(tuvs[0].find("{*}seg"))
        target = _text_of(tuvs[1].find("{*}seg"))
        if source and target:
            units.append(TranslationUnit(source=source, target=target))
    _logger.debug("Parsed %d TMX units", len(units))
    return units


def serialize_tbx(terms: Iterable[Term], source_lang: str, target_lang: str) -> str:
    root = etree.Element("martif", type="TBX-Basic")
    file_desc = etree.SubElement(etree.SubElement(root, "martifHeader"), "fileDesc")
    etree.SubElement(etree.SubElement(file_desc, "titleStmt"), "title").text = f"{APP_NAME} Terminology"
    etree.SubElement(etree.SubElement(file_desc, "sourceDesc"), "p").text = f"Created with {APP_NAME}"
    body = etree.SubElement(etree.SubElement(root, "text"), "body")
    for term in terms:
        entry = etree.SubElement(body, "termEntry")
        for lang, value in ((source_lang, term.source), (target_lang, term.target)):
            lang_set = etree.SubElement(entry, "langSet", {XML_LANG: lang})
            etree.SubElement(etree.SubElement(lang_set, "tig"), "term").text = value
        if term.definition:
            etree.SubElement(entry, "descrip", type="definition").text = term.definition
    return _tostring(root)


def parse_tbx(text: str, first_id: int = 1) -> list[Term]:
    root = _parse_xml(text, "TBX")
    if root is None:
        return []
    terms: list[Term] = []
    for entry in root.iter("{*}termEntry"):
        lang_sets = entry.findall(".//{*}langSet")
        if len(lang_sets) < 2:
            continue
        source = _text_of(lang_sets[0].find(".//{*}term"))
        target = _text_of(lang_sets[1].find(".//{*}term"))
        if not (source and target):
            continue
        definition = None
        for descrip in entry.iter("{*}descrip"):
            if descrip.get("type") == "definition":
                definition = _text_of(descrip) or None
                break
        terms.append(Term(id=int(first_id) + len(terms), source=source, target=target, definition=definition))
    _logger.debug("Parsed %d TBX terms", len(terms))
    return terms


def parse_tm_matches(text: str) -> list[TmMatch]:
    """External fuzzy-lookup results: one `{segmentId, score, target?, source?}` object per line."""
    matches: list[TmMatch] = []
    for obj in _iter_jsonl(text, "TM match"):
        try:
            matches.append(
                TmMatch(
                    segment_id=int(obj["segmentId"]),
                    score=float(obj["score"]),
                    target=str(obj.get("target", "")),
                    source=str(obj.get("source", "")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedInterchangeFile(f"Invalid TM match record: {exc}", field="segmentId/score", raw=obj) from exc
    return matches
