from __future__ import annotations

import html
import json
from pathlib import Path
from typing import Iterable

from .anchor_tree import strip_html
from .models import QaIssue, QaIssueType
from .qa import QA_SEVERITY


def write_qa_jsonl(issues: Iterable[QaIssue], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for issue in issues:
            rec = issue.to_dict()
            rec["severity"] = QA_SEVERITY[issue.type].value
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")


def _esc(s: str) -> str:
    return html.escape(s, quote=True)


def _group_by_segment(issues: Iterable[QaIssue]) -> dict[int, list[QaIssue]]:
    grouped: dict[int, list[QaIssue]] = {}
    for issue in issues:
        grouped.setdefault(issue.segment_id, []).append(issue)
    return grouped


def _segment_card(segment_id: int, issues: list[QaIssue]) -> str:
    first = issues[0]
    fix = next((i.suggested_fix for i in issues if i.suggested_fix), None)
    types = " ".join(sorted({i.type.value for i in issues}))

    items = "".join(
        f"<li class='issue' data-type='{i.type.value}' data-sev='{QA_SEVERITY[i.type].value}'>"
        f"<span class='badge'>{_esc(i.type.value)}</span> {_esc(i.description)}"
        + (f" <span class='hint'>{_esc(i.suggestion)}</span>" if i.suggestion else "")
        + "</li>"
        for i in issues
    )
    panes = (
        f"<div><div class='label'>source</div><pre>{_esc(strip_html(first.source))}</pre></div>"
        f"<div><div class='label'>target</div><pre>{_esc(strip_html(first.target))}</pre></div>"
    )
    if fix:
        panes += f"<div class='fix'><div class='label'>suggested fix</div><pre>{_esc(strip_html(fix))}</pre></div>"
    return (
        f"<section class='segment' data-types='{types}' data-fix='{1 if fix else 0}'>"
        f"<h2>Segment {segment_id}</h2><ul>{items}</ul><div class='panes'>{panes}</div></section>"
    )


def write_qa_report(issues: Iterable[QaIssue], path: Path, title: str = "QA report") -> None:
    """Write a self-contained HTML page with one card per affected segment.

    The type selector lists every `QaIssueType` with its count; types without
    issues are listed but disabled.
    """
    issues = list(issues)
    grouped = _group_by_segment(issues)
    counts = {t: sum(1 for i in issues if i.type is t) for t in QaIssueType}

    options = "".join(
        f"<option value='{t.value}'{'' if n else ' disabled'}>{t.value} ({n})</option>" for t, n in counts.items()
    )
    cards = "".join(_segment_card(seg_id, seg_issues) for seg_id, seg_issues in grouped.items())
    if not cards:
        cards = "<p>No issues found.</p>"

    html_doc = f"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8"/>
<title>{_esc(title)}</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 16px; }}
.segment {{ border: 1px solid #ddd; border-radius: 4px; margin: 12px 0; padding: 8px 12px; }}
.segment h2 {{ font-size: 15px; margin: 0 0 6px 0; }}
.issue[data-sev="error"] .badge {{ background: #b00020; color: #fff; }}
.badge {{ background: #eee; border-radius: 3px; font-size: 11px; padding: 1px 4px; }}
.hint {{ color: #666; }}
.panes {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 8px; }}
.label {{ color: #666; font-size: 11px; text-transform: uppercase; }}
pre {{ margin: 0; padding: 6px; background: #fafafa; white-space: pre-wrap; }}
.fix pre {{ background: #f3fbf3; }}
</style>
</head>
<body>
<h1>{_esc(title)}</h1>
<p>{len(issues)} issue(s) in {len(grouped)} segment(s).</p>
<p>
  <select id="type"><option value="">all types</option>{options}</select>
  <label><input type="checkbox" id="fixable"/> only segments with a suggested fix</label>
</p>
{cards}
<script>
const typeSel = document.getElementById('type');
const fixable = document.getElementById('fixable');
function applyFilters() {{
  document.querySelectorAll('section.segment').forEach(sec => {{
    const hit = !typeSel.value || sec.dataset.types.split(' ').includes(typeSel.value);
    sec.hidden = !hit || (fixable.checked && sec.dataset.fix !== '1');
  }});
}}
typeSel.addEventListener('change', applyFilters);
fixable.addEventListener('change', applyFilters);
</script>
</body>
</html>
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(html_doc, encoding="utf-8")
