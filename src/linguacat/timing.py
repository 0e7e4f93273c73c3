from __future__ import annotations

import html
import logging
import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .anchor_tree import ANCHOR_ATTR, strip_html
from .errors import InvalidTimeFormat
from .models import Segment

_SRT_TIME_RE = re.compile(r"^(\d+):([0-5]?\d):([0-5]?\d),(\d{3})$")
_TRANSCRIPT_MARK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# Reading speed used to estimate how long the last transcript chunk stays on screen.
CHARS_PER_SECOND = 15
MIN_CHUNK_SECONDS = 2.0

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimedChunk:
    text: str
    start: float
    end: float


def format_time(seconds: float) -> str:
    """Seconds -> subtitle timestamp `HH:MM:SS,mmm`."""
    total_ms = max(0, int(round(float(seconds) * 1000)))
    total_s, ms = divmod(total_ms, 1000)
    hours, rest = divmod(total_s, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def parse_time_strict(text: str, field: str = "time") -> float:
    match = _SRT_TIME_RE.match((text or "").strip())
    if not match:
        raise InvalidTimeFormat(
            f"Invalid {field} value {text!r}: expected HH:MM:SS,mmm",
            field=field,
            raw=text,
        )
    hours, minutes, secs, ms = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + int(secs) + int(ms) / 1000


def parse_time(text: str) -> float:
    """Inverse of `format_time`; returns NaN for malformed input."""
    try:
        return parse_time_strict(text)
    except InvalidTimeFormat:
        return math.nan


def resolve_time_edit(raw: str, previous: float, field: str = "time") -> float:
    """Parse a user-typed timestamp, falling back to the last known-good value."""
    value = parse_time(raw)
    if math.isnan(value):
        _logger.debug("Ignoring malformed %s %r; keeping %.3f", field, raw, previous)
        return previous
    return value


def format_timestamp(seconds: float) -> str:
    """Compact player position `MM:SS.s`."""
    if seconds is None or math.isnan(seconds) or seconds < 0:
        return "00:00.0"
    minutes = int(seconds // 60)
    rest = seconds % 60
    return f"{minutes:02d}:{rest:04.1f}"


def parse_timed_transcript(text: str) -> list[TimedChunk]:
    """Parse a transcript where a bare `m:ss` line opens a chunk and following lines are its text.

    Lines before the first timestamp and timestamps without text are ignored.
    """
    pending: list[tuple[float, list[str]]] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        mark = _TRANSCRIPT_MARK_RE.match(stripped)
        if mark:
            pending.append((int(mark.group(1)) * 60 + int(mark.group(2)), []))
        elif pending:
            pending[-1][1].append(stripped)

    starts = [(float(start), " ".join(words)) for start, words in pending if words]
    chunks: list[TimedChunk] = []
    for i, (start, chunk_text) in enumerate(starts):
        if i + 1 < len(starts):
            end = starts[i + 1][0]
        else:
            end = start + max(MIN_CHUNK_SECONDS, len(chunk_text) / CHARS_PER_SECOND)
        if end <= start:
            end = start + MIN_CHUNK_SECONDS
        chunks.append(TimedChunk(text=chunk_text, start=start, end=end))
    return chunks


def segments_from_transcript(chunks: Iterable[TimedChunk], first_id: int = 1) -> tuple[list[Segment], str]:
    """Timed draft segments plus the anchored source document for a parsed transcript."""
    segments: list[Segment] = []
    anchored: list[str] = []
    for offset, chunk in enumerate(chunks):
        seg_id = int(first_id) + offset
        body = html.escape(chunk.text, quote=False)
        segments.append(
            Segment(id=seg_id, source=f"<p>{body}</p>", start_time=chunk.start, end_time=chunk.end)
        )
        anchored.append(f'<p {ANCHOR_ATTR}="{seg_id}">{body}</p>')
    return segments, "".join(anchored)


def export_srt(segments: Sequence[Segment]) -> str:
    """SubRip text for timed segments; untimed or empty segments are skipped and not numbered."""
    entries: list[str] = []
    for seg in segments:
        if not seg.is_timed:
            continue
        content = seg.target.strip() or seg.source.strip()
        subtitle = strip_html(content).strip()
        if not subtitle:
            continue
        entries.append(
            f"{len(entries) + 1}\n{format_time(seg.start_time)} --> {format_time(seg.end_time)}\n{subtitle}\n"
        )
    return "\n".join(entries)
