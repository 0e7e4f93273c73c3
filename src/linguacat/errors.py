from __future__ import annotations

from typing import Any


class LinguaCatError(Exception):
    """Base class for fatal errors surfaced to the caller.

    `field` names the offending key/entry/attribute and `raw` holds the value that
    was rejected, so callers can show a precise message.
    """

    def __init__(self, message: str, *, field: str | None = None, raw: Any = None) -> None:
        super().__init__(message)
        self.field = field
        self.raw = raw


class InvalidFileType(LinguaCatError):
    """Wrong file extension or container signature."""


class MalformedProjectFile(LinguaCatError):
    """Project JSON could not be parsed or misses a required key."""


class UnsupportedProjectVersion(LinguaCatError):
    """Project file was written by another application (appName mismatch)."""


class ZipEntryMissing(LinguaCatError):
    """A DOCX archive lacks the main document body entry."""


class MalformedInterchangeFile(LinguaCatError):
    """A JSONL / TMX / TBX term or translation-unit file could not be parsed."""


class InvalidTimeFormat(LinguaCatError):
    """Subtitle timestamp is not HH:MM:SS,mmm.

    Only raised by the strict parser; interactive edits revert to the previous value instead.
    """
