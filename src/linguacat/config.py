from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .project import DEFAULT_MODEL
from .reconstruct import NEEDS_TRANSLATION_CLASS

DOCX_STRATEGIES = {"structural", "verbatim"}


@dataclass(frozen=True)
class QaConfig:
    # Tag-count comparison is noisy for rich-text targets; off unless asked for.
    tag_mismatch: bool = False


@dataclass(frozen=True)
class DocxConfig:
    strategy: str = "structural"  # 'structural' | 'verbatim'
    max_image_width: int = 450


@dataclass(frozen=True)
class ExportConfig:
    needs_translation_class: str = NEEDS_TRANSLATION_CLASS


@dataclass(frozen=True)
class TMConfig:
    path: str = "translation_memory.sqlite"


@dataclass(frozen=True)
class EditorConfig:
    qa: QaConfig = QaConfig()
    docx: DocxConfig = DocxConfig()
    export: ExportConfig = ExportConfig()
    tm: TMConfig = TMConfig()
    default_model: str = DEFAULT_MODEL
    log_path: str | None = None


def _resolve_optional_path(base_dir: Path, value: Any) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    path = Path(raw)
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return str(path)


def _normalize_choice(value: Any, *, field_name: str, allowed: set[str], default: str) -> str:
    raw = str(default if value is None else value).strip().lower()
    if raw not in allowed:
        allowed_list = ", ".join(sorted(allowed))
        raise ValueError(f"Invalid value for {field_name}: {raw!r}. Allowed: {allowed_list}")
    return raw


def _positive_int(value: Any, *, field_name: str, default: int) -> int:
    number = int(default if value is None else value)
    if number <= 0:
        raise ValueError(f"Invalid value for {field_name}: {number!r}. Must be > 0")
    return number


def load_config(path: str | Path) -> EditorConfig:
    cfg_path = Path(path)
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}

    qa_data = data.get("qa", {}) or {}
    docx_data = data.get("docx", {}) or {}
    export_data = data.get("export", {}) or {}
    tm_data = data.get("tm", {}) or {}

    qa = QaConfig(tag_mismatch=bool(qa_data.get("tag_mismatch", False)))
    docx = DocxConfig(
        strategy=_normalize_choice(
            docx_data.get("strategy", "structural"),
            field_name="docx.strategy",
            allowed=DOCX_STRATEGIES,
            default="structural",
        ),
        max_image_width=_positive_int(
            docx_data.get("max_image_width"), field_name="docx.max_image_width", default=450
        ),
    )
    needs_class = str(export_data.get("needs_translation_class") or NEEDS_TRANSLATION_CLASS).strip()
    export = ExportConfig(needs_translation_class=needs_class or NEEDS_TRANSLATION_CLASS)
    tm = TMConfig(
        path=_resolve_optional_path(cfg_path.parent, tm_data.get("path")) or TMConfig().path,
    )

    return EditorConfig(
        qa=qa,
        docx=docx,
        export=export,
        tm=tm,
        default_model=str(data.get("default_model") or DEFAULT_MODEL),
        log_path=_resolve_optional_path(cfg_path.parent, data.get("log_path")),
    )
