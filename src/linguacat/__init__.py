"""linguacat - segment model, reconstruction, QA and statistics core of a CAT editor."""

from .project import load_project, save_project
from .qa import run_qa_checks
from .reconstruct import reconstruct, render_body_html
from .segments import SegmentStore
from .statistics import generate_statistics_report

__all__ = [
    "SegmentStore",
    "generate_statistics_report",
    "load_project",
    "reconstruct",
    "render_body_html",
    "run_qa_checks",
    "save_project",
]
