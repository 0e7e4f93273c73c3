from __future__ import annotations

import datetime as dt
import html
import logging
import sqlite3
from collections.abc import Callable, Iterable
from contextlib import suppress
from pathlib import Path
from typing import TypeVar

from .anchor_tree import strip_html
from .models import SegmentStatus, TranslationUnit
from .segments import SegmentStore

T = TypeVar("T")

TM_EXACT_SOURCE = "tm-100"

_logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    # Keep newlines but collapse whitespace inside lines.
    lines = [" ".join(line.split()) for line in text.replace("\r\n", "\n").split("\n")]
    return "\n".join(lines).strip()


class TMStore:
    """Local translation memory of unique (source, target) pairs with exact lookup."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = self._connect_with_recovery()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> TMStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _connect_sqlite(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _quarantine_corrupt_sqlite(self) -> None:
        stamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for suffix in ("", "-wal", "-shm"):
            src = Path(f"{self.path}{suffix}")
            if not src.exists():
                continue
            dst = Path(f"{src}.corrupt-{stamp}")
            try:
                src.replace(dst)
            except OSError:
                continue
            _logger.warning("Moved corrupt TM file %s to %s", src, dst)

    def _connect_with_recovery(self) -> sqlite3.Connection:
        conn: sqlite3.Connection | None = None
        try:
            conn = self._connect_sqlite()
            self.conn = conn
            self._init_db()
            return conn
        except sqlite3.DatabaseError:
            if conn is not None:
                conn.close()
            self._quarantine_corrupt_sqlite()
            conn = self._connect_sqlite()
            self.conn = conn
            self._init_db()
            return conn

    @staticmethod
    def _is_corruption_error(exc: sqlite3.DatabaseError) -> bool:
        message = str(exc).lower()
        return any(marker in message for marker in ("malformed", "not a database"))

    def _run_with_recovery(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except sqlite3.DatabaseError as exc:
            if not self._is_corruption_error(exc):
                raise
            with suppress(sqlite3.Error):
                self.conn.close()
            self._quarantine_corrupt_sqlite()
            self.conn = self._connect_sqlite()
            self._init_db()
            return operation()

    def _init_db(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tm_units (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              source TEXT NOT NULL,
              source_norm TEXT NOT NULL,
              target TEXT NOT NULL,
              created_at TEXT NOT NULL,
              UNIQUE(source, target)
            );
            """
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS tm_units_source_norm ON tm_units(source_norm);")
        self.conn.commit()

    @staticmethod
    def _utc_now_iso() -> str:
        return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    def _insert(self, unit: TranslationUnit, now: str) -> bool:
        cur = self.conn.execute(
            "INSERT OR IGNORE INTO tm_units(source, source_norm, target, created_at) VALUES(?,?,?,?)",
            (unit.source, normalize_text(unit.source), unit.target, now),
        )
        return cur.rowcount > 0

    def add_unit(self, unit: TranslationUnit) -> bool:
        """Store a pair; returns False when the exact pair already exists."""

        def _operation() -> bool:
            added = self._insert(unit, self._utc_now_iso())
            self.conn.commit()
            return added

        return self._run_with_recovery(_operation)

    def bulk_add(self, units: Iterable[TranslationUnit]) -> int:
        batch = [u for u in units if u.source.strip() and u.target.strip()]

        def _operation() -> int:
            now = self._utc_now_iso()
            added = sum(1 for unit in batch if self._insert(unit, now))
            self.conn.commit()
            return added

        added = self._run_with_recovery(_operation)
        _logger.info("TM: added %d of %d units", added, len(batch))
        return added

    def all_units(self) -> list[TranslationUnit]:
        def _operation() -> list[TranslationUnit]:
            cur = self.conn.execute("SELECT source, target FROM tm_units ORDER BY id")
            return [TranslationUnit(source=row[0], target=row[1]) for row in cur.fetchall()]

        return self._run_with_recovery(_operation)

    def count(self) -> int:
        return self._run_with_recovery(lambda: int(self.conn.execute("SELECT COUNT(*) FROM tm_units").fetchone()[0]))

    def clear(self) -> None:
        def _operation() -> None:
            self.conn.execute("DELETE FROM tm_units")
            self.conn.commit()

        self._run_with_recovery(_operation)

    def get_exact(self, source: str) -> TranslationUnit | None:
        """Most recently stored unit whose normalized source equals `source`."""
        source_norm = normalize_text(source)
        if not source_norm:
            return None

        def _operation() -> TranslationUnit | None:
            row = self.conn.execute(
                "SELECT source, target FROM tm_units WHERE source_norm = ? ORDER BY id DESC LIMIT 1",
                (source_norm,),
            ).fetchone()
            return TranslationUnit(source=row[0], target=row[1]) if row else None

        return self._run_with_recovery(_operation)


def pretranslate_exact(tm: TMStore, store: SegmentStore) -> int:
    """Fill empty draft targets from exact TM hits; returns the number of segments filled."""
    filled = 0
    for seg in store:
        if seg.status is not SegmentStatus.DRAFT or strip_html(seg.target).strip():
            continue
        hit = tm.get_exact(strip_html(seg.source))
        if hit is None:
            continue
        filled += store.update_segment(
            seg.id,
            target=f"<p>{html.escape(hit.target, quote=False)}</p>",
            translation_source=TM_EXACT_SOURCE,
            is_dirty=True,
        )
    _logger.info("TM pre-translation: %d segment(s) filled from exact matches", filled)
    return filled
