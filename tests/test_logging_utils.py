from __future__ import annotations

import logging

from linguacat.logging_utils import setup_logging


def _flush_root() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def test_verbose_logging_keeps_third_party_quiet(tmp_path, capsys):
    log_path = tmp_path / "logs" / "run.log"

    logger = setup_logging(log_path, level=logging.DEBUG)
    logging.getLogger("linguacat.tm").debug("TM lookup for segment 3")
    logging.getLogger("PIL.PngImagePlugin").debug("STREAM b'IHDR'")
    _flush_root()

    assert logger.name == "linguacat"
    text = log_path.read_text(encoding="utf-8")
    assert "DEBUG linguacat.tm: TM lookup for segment 3" in text
    assert "IHDR" not in text
    assert capsys.readouterr().out == ""


def test_default_level_hides_debug(tmp_path):
    log_path = tmp_path / "run.log"

    setup_logging(log_path)
    logging.getLogger("linguacat.segments").debug("hidden")
    logging.getLogger("linguacat.segments").info("Loaded [bold]3[/bold] segments")
    _flush_root()

    text = log_path.read_text(encoding="utf-8")
    assert "hidden" not in text
    assert "Loaded [bold]3[/bold] segments" in text
