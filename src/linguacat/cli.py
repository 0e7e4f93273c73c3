from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .anchor_tree import parse_html
from .config import EditorConfig, load_config
from .docx_export import get_docx_strategy
from .errors import LinguaCatError
from .interchange import (
    dump_tm_units,
    export_translation_memory,
    parse_jsonl_units,
    parse_tbx,
    parse_term_db,
    parse_tm_matches,
    parse_tmx,
    serialize_tmx,
    translation_units_from_segments,
)
from .logging_utils import setup_logging
from .models import Term, TmMatch
from .project import PROJECT_SUFFIX, ProjectState, load_project, new_project, save_project
from .qa import build_rules, run_qa_checks
from .qa_report import write_qa_jsonl, write_qa_report
from .reconstruct import export_html, find_missing_anchors, render_body_html
from .segments import SegmentStore
from .statistics import StatisticsReport, generate_statistics_report, index_matches
from .timing import export_srt, parse_timed_transcript, segments_from_transcript
from .tm import TMStore, pretranslate_exact

EXPORT_FORMATS = ("docx", "docx-verbatim", "html", "preview", "srt", "tm-jsonl")
_BLANK_PAGE = '<html><head><meta charset="utf-8"/></head><body></body></html>'

_logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="linguacat", description="Export, check and analyse LinguaSync projects.")
    p.add_argument("--config", "-c", default=None, help="Path to YAML config")
    p.add_argument("--log", default=None, help="Optional log file path (overrides config log_path)")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    e = sub.add_parser("export", help="Reconstruct the translated document from a project file.")
    e.add_argument("--project", "-p", required=True, help=f"Path to {PROJECT_SUFFIX} project")
    e.add_argument("--output", "-o", required=True, help="Output file path")
    e.add_argument(
        "--format", "-f", choices=EXPORT_FORMATS, default="docx", help="docx follows docx.strategy from the config"
    )
    e.add_argument(
        "--original",
        default=None,
        help="Original .docx (docx-verbatim) or .html (html) when the project does not embed it.",
    )

    q = sub.add_parser("qa", help="Run QA checks and write HTML/JSONL reports.")
    q.add_argument("--project", "-p", required=True, help=f"Path to {PROJECT_SUFFIX} project")
    q.add_argument("--terms", default=None, help="Term base (.jsonl or .tbx)")
    q.add_argument("--report", default="qa_report.html", help="HTML report path")
    q.add_argument("--jsonl", default="qa.jsonl", help="JSONL report path")
    q.add_argument("--tag-mismatch", action="store_true", help="Also compare tag counts.")

    s = sub.add_parser("stats", help="Print counts and weighted analysis reports.")
    s.add_argument("--project", "-p", required=True, help=f"Path to {PROJECT_SUFFIX} project")
    s.add_argument("--matches", default=None, help="TM match records (.jsonl: segmentId, score, target)")
    s.add_argument("--json", default=None, help="Also write the report as JSON")

    t = sub.add_parser("transcript", help="Convert a timed transcript into SRT (and optionally a project).")
    t.add_argument("--input", "-i", required=True, help="Transcript text file (m:ss lines followed by text)")
    t.add_argument("--output", "-o", required=True, help="Output .srt path")
    t.add_argument("--project-out", default=None, help=f"Also write a new {PROJECT_SUFFIX} project")
    t.add_argument("--name", default=None, help="Project name (defaults to the input file name)")

    m = sub.add_parser("pretranslate", help="Fill empty segments from exact translation-memory matches.")
    m.add_argument("--project", "-p", required=True, help=f"Path to {PROJECT_SUFFIX} project")
    m.add_argument("--output", "-o", default=None, help="Output project path (defaults to in-place)")
    m.add_argument("--tm", default=None, help="TM database path (overrides config tm.path)")
    m.add_argument("--learn", action="store_true", help="Store the project's translated segments in the TM first.")

    u = sub.add_parser("tm", help="Import or export the translation memory (.jsonl or .tmx).")
    u.add_argument("--tm", default=None, help="TM database path (overrides config tm.path)")
    u.add_argument("--import", dest="import_path", default=None, help="Add units from a .jsonl or .tmx file")
    u.add_argument("--export", dest="export_path", default=None, help="Write every unit to a .jsonl or .tmx file")
    u.add_argument("--source-lang", default=None, help="TMX source language code")
    u.add_argument("--target-lang", default=None, help="TMX target language code")
    return p


def _read_terms(path: str | None) -> list[Term]:
    if not path:
        return []
    text = Path(path).read_text(encoding="utf-8")
    return parse_tbx(text) if Path(path).suffix.lower() == ".tbx" else parse_term_db(text)


def _cmd_export(args: argparse.Namespace, cfg: EditorConfig) -> int:
    state = load_project(Path(args.project))
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)

    _log_missing_anchors(state)

    if args.format in ("docx", "docx-verbatim"):
        strategy = get_docx_strategy(
            "verbatim" if args.format == "docx-verbatim" else cfg.docx.strategy,
            max_image_width=cfg.docx.max_image_width,
            original=Path(args.original).read_bytes() if args.original else None,
        )
        out.write_bytes(strategy.export(state))
    elif args.format == "html":
        if args.original:
            original_html = Path(args.original).read_text(encoding="utf-8")
        elif state.source_file is not None:
            original_html = state.source_file.decode().decode("utf-8", errors="replace")
        else:
            original_html = _BLANK_PAGE
        out.write_text(export_html(original_html, state.source_document_html, state.segments), encoding="utf-8")
    elif args.format == "preview":
        body = render_body_html(
            state.source_document_html,
            state.segments,
            final=False,
            needs_translation_class=cfg.export.needs_translation_class,
        )
        out.write_text(body, encoding="utf-8")
    elif args.format == "srt":
        out.write_text(export_srt(state.segments), encoding="utf-8")
    else:
        out.write_text(export_translation_memory(state.segments), encoding="utf-8")

    _logger.info("Exported %s: %s", args.format, out)
    return 0


def _log_missing_anchors(state: ProjectState) -> None:
    if not state.source_document_html:
        return
    for issue in find_missing_anchors(parse_html(state.source_document_html), state.segments):
        _logger.info("Segment %s has no anchor in the source document; it is left out", issue.details["segment_id"])


def _cmd_qa(args: argparse.Namespace, cfg: EditorConfig) -> int:
    state = load_project(Path(args.project))
    rules = build_rules(tag_mismatch=bool(args.tag_mismatch or cfg.qa.tag_mismatch))
    issues = run_qa_checks(state.segments, _read_terms(args.terms), rules=rules)
    write_qa_report(issues, Path(args.report), title=f"{state.project.name} QA report")
    write_qa_jsonl(issues, Path(args.jsonl))
    print(f"QA issues: {len(issues)}")
    print(f"Report written: {args.report}")
    return 0


def _print_stats(report: StatisticsReport) -> None:
    console = Console()
    counts = Table(title="Counts")
    for col in ("Type", "Segments", "Src words", "Src chars", "Src tags", "Tgt words", "Tgt chars", "Tgt tags", "%"):
        counts.add_column(col, justify="left" if col == "Type" else "right")
    for row in report.counts:
        counts.add_row(
            row.label,
            str(row.segments),
            str(row.source_words),
            str(row.source_chars),
            str(row.source_tags),
            str(row.target_words),
            str(row.target_chars),
            str(row.target_tags),
            f"{row.percentage:.1f}",
        )
    analysis = Table(title="Analysis")
    for col in ("Type", "Segments", "Words", "Weighted words", "Chars", "Weighted chars", "Tags", "%"):
        analysis.add_column(col, justify="left" if col == "Type" else "right")
    for row in report.analysis:
        analysis.add_row(
            row.label,
            str(row.segments),
            str(row.source_words),
            f"{row.weighted_words:.1f}",
            str(row.source_chars),
            f"{row.weighted_chars:.1f}",
            str(row.source_tags),
            f"{row.percentage:.1f}",
        )
    console.print(counts)
    console.print(analysis)


def _cmd_stats(args: argparse.Namespace, cfg: EditorConfig) -> int:
    state = load_project(Path(args.project))
    matches: dict[int, TmMatch] = {}
    if args.matches:
        matches = index_matches(parse_tm_matches(Path(args.matches).read_text(encoding="utf-8")))
    report = generate_statistics_report(state.segments, matches)
    _print_stats(report)
    if args.json:
        Path(args.json).write_text(json.dumps(report.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    return 0


def _cmd_transcript(args: argparse.Namespace, cfg: EditorConfig) -> int:
    src = Path(args.input)
    chunks = parse_timed_transcript(src.read_text(encoding="utf-8"))
    if not chunks:
        print(f"No timed text found in {src}", file=sys.stderr)
        return 1
    segments, source_html = segments_from_transcript(chunks)
    Path(args.output).write_text(export_srt(segments), encoding="utf-8")
    if args.project_out:
        state = new_project(
            args.name or src.stem,
            segments,
            source_document_html=source_html,
            model=cfg.default_model,
        )
        save_project(state, Path(args.project_out))
    _logger.info("Transcript: %d subtitle(s) written to %s", len(segments), args.output)
    return 0


def _cmd_pretranslate(args: argparse.Namespace, cfg: EditorConfig) -> int:
    path = Path(args.project)
    state = load_project(path)
    store = SegmentStore(state.segments)
    with TMStore(args.tm or cfg.tm.path) as tm:
        if args.learn:
            tm.bulk_add(translation_units_from_segments(state.segments))
        filled = pretranslate_exact(tm, store)
    state.segments = list(store.segments)
    save_project(state, Path(args.output) if args.output else path)
    print(f"Pre-translated segments: {filled}")
    return 0


def _cmd_tm(args: argparse.Namespace, cfg: EditorConfig) -> int:
    if not (args.import_path or args.export_path):
        print("Nothing to do: pass --import and/or --export", file=sys.stderr)
        return 1
    export_tmx = bool(args.export_path) and Path(args.export_path).suffix.lower() == ".tmx"
    if export_tmx and not (args.source_lang and args.target_lang):
        print("TMX export needs --source-lang and --target-lang", file=sys.stderr)
        return 1

    with TMStore(args.tm or cfg.tm.path) as tm:
        if args.import_path:
            src = Path(args.import_path)
            text = src.read_text(encoding="utf-8")
            units = parse_tmx(text) if src.suffix.lower() == ".tmx" else parse_jsonl_units(text)
            print(f"TM units added: {tm.bulk_add(units)}")
        if args.export_path:
            out = Path(args.export_path)
            units = tm.all_units()
            text = serialize_tmx(units, args.source_lang, args.target_lang) if export_tmx else dump_tm_units(units)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(text, encoding="utf-8")
            _logger.info("Exported %d TM unit(s) to %s", len(units), out)
    return 0


_COMMANDS = {
    "export": _cmd_export,
    "qa": _cmd_qa,
    "stats": _cmd_stats,
    "transcript": _cmd_transcript,
    "pretranslate": _cmd_pretranslate,
    "tm": _cmd_tm,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    cfg = load_config(args.config) if args.config else EditorConfig()
    log_path = args.log or cfg.log_path
    setup_logging(Path(log_path) if log_path else None, level=logging.DEBUG if args.verbose else logging.INFO)

    handler = _COMMANDS.get(args.cmd)
    if handler is None:
        print(f"Unknown command: {args.cmd}", file=sys.stderr)
        return 2
    try:
        return handler(args, cfg)
    except LinguaCatError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
