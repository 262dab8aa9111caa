from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>mafreannot Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    .warn { color: #a15c00; }
  </style>
</head>
<body>

<h1>mafreannot Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs / outputs</h3>
    <table>
      <tr><th>Input MAF</th><td><code>{{ summary.input_maf }}</code></td></tr>
      <tr><th>Output MAF</th><td><code>{{ summary.output_maf or "stdout" }}</code></td></tr>
      <tr><th>Working directory</th><td><code>{{ summary.tmp_dir or "temporary (removed)" }}</code></td></tr>
      <tr><th>Runtime (s)</th><td>{{ "%.1f"|format(summary.runtime_seconds) }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Retained columns</h3>
    <table>
      <tr><th>Requested</th><td>{{ summary.retain_columns|join(", ") or "none" }}</td></tr>
      <tr><th>Applied</th><td>{{ summary.active_columns|join(", ") or "none" }}</td></tr>
      <tr><th>Duplicate variant keys</th><td>{{ summary.duplicate_keys }}</td></tr>
    </table>
  </div>
</div>

<h2>Tumor/normal pairs</h2>
<p>{{ summary.records_total }} annotated VCF records; {{ summary.rows_written }} MAF rows written.</p>
<table>
  <tr><th>Pair</th><th>Annotated VCF records</th></tr>
  {% for label, n in summary.pairs|dictsort %}
  <tr><td><code>{{ label }}</code></td><td>{{ n }}</td></tr>
  {% endfor %}
</table>

{% if summary.warnings %}
<h2>Warnings</h2>
<ul>
  {% for w in summary.warnings %}
  <li class="warn">{{ w }}</li>
  {% endfor %}
</ul>
{% endif %}

<hr>
<p class="small">mafreannot {{ version }}</p>
</body>
</html>"""
)


def render_report(*, out_path: str | Path, version: str, summary: Dict[str, Any]) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        summary=summary,
    )
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
