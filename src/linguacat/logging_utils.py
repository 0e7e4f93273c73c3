from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "linguacat"


def setup_logging(log_path: Path | None = None, level: int = logging.INFO) -> logging.Logger:
    """Route log records to stderr (and optionally `log_path`) so stdout carries only command output.

    `level` applies to the `linguacat` loggers only; third-party libraries
    (Pillow's image plugins, python-docx) stay at WARNING even under `--verbose`.
    Segment text is logged as-is, so rich markup is disabled.
    """
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
            show_time=False,
            markup=False,
        )
    ]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
        )
        handlers.append(fh)

    # main() runs once per CLI call; force drops handlers left by a previous call.
    logging.basicConfig(level=logging.WARNING, handlers=handlers, format="%(message)s", force=True)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    return logger
