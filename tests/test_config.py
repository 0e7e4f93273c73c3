from __future__ import annotations

import pytest

from linguacat.config import DocxConfig, EditorConfig, load_config
from linguacat.project import DEFAULT_MODEL
from linguacat.reconstruct import NEEDS_TRANSLATION_CLASS


def test_editor_config_defaults():
    cfg = EditorConfig()
    assert cfg.qa.tag_mismatch is False
    assert cfg.docx.strategy == "structural"
    assert cfg.docx.max_image_width == 450
    assert cfg.export.needs_translation_class == NEEDS_TRANSLATION_CLASS
    assert cfg.default_model == DEFAULT_MODEL
    assert cfg.log_path is None


def test_load_config_empty_file_uses_defaults(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("", encoding="utf-8")

    cfg = load_config(config_path)
    assert cfg.docx == DocxConfig()
    assert cfg.tm.path == "translation_memory.sqlite"


def test_load_config_reads_values_and_resolves_paths(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "qa:\n"
        "  tag_mismatch: true\n"
        "docx:\n"
        "  strategy: Verbatim\n"
        "  max_image_width: 600\n"
        "tm:\n"
        "  path: data/tm.sqlite\n"
        "default_model: gemini-2.5-pro\n"
        "log_path: logs/run.log\n",
        encoding="utf-8",
    )

    cfg = load_config(config_path)
    assert cfg.qa.tag_mismatch is True
    assert cfg.docx.strategy == "verbatim"
    assert cfg.docx.max_image_width == 600
    assert cfg.tm.path == str((tmp_path / "data" / "tm.sqlite").resolve())
    assert cfg.log_path == str((tmp_path / "logs" / "run.log").resolve())
    assert cfg.default_model == "gemini-2.5-pro"


def test_load_config_rejects_unknown_strategy(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("docx:\n  strategy: magic\n", encoding="utf-8")

    with pytest.raises(ValueError, match="docx.strategy"):
        load_config(config_path)


def test_load_config_rejects_non_positive_image_width(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("docx:\n  max_image_width: 0\n", encoding="utf-8")

    with pytest.raises(ValueError, match="max_image_width"):
        load_config(config_path)
