from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Sequence

from jinja2 import Template

from .models import InsertionCall

logger = logging.getLogger(__name__)

# at most this many calls are listed inline
_MAX_CALL_ROWS = 200

_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>TEMapper Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    .warn { color: #a33; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>TEMapper Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      {% for k, v in inputs.items() %}
      <tr><th>{{ k }}</th><td><code>{{ v }}</code></td></tr>
      {% endfor %}
      <tr><th>Records read</th><td>{{ stats.records_total }}</td></tr>
      <tr><th>Records skipped (malformed)</th><td>{{ stats.records_skipped }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Parameters</h3>
    <table>
      {% for k, v in config.items() %}
      <tr><th>{{ k }}</th><td>{{ v }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

<h2>Read classes</h2>
<table>
  {% for k, v in stats.reads_classified.items() %}
  <tr><th>{{ k }}</th><td>{{ v }}</td></tr>
  {% endfor %}
  {% for k, v in stats.discard_reasons.items() %}
  <tr><th>DISCARD: {{ k }}</th><td>{{ v }}</td></tr>
  {% endfor %}
</table>

<h2>Clusters and calls</h2>
<table>
  <tr><th>Junction clusters</th><td>{{ stats.clusters_formed.JUNCTION }}</td></tr>
  <tr><th>Anchor clusters</th><td>{{ stats.clusters_formed.ANCHOR }}</td></tr>
  <tr><th>Calls emitted</th><td>{{ stats.calls_emitted }}</td></tr>
  <tr><th>Reference TE calls</th><td>{{ stats.reference_calls }}</td></tr>
  {% for k, v in stats.calls_by_confidence.items() %}
  <tr><th>{{ k }}</th><td>{{ v }}</td></tr>
  {% endfor %}
  <tr><th>Contigs processed</th><td>{{ stats.contigs_processed }}</td></tr>
  <tr><th>Runtime (s)</th><td>{{ "%.2f"|format(stats.runtime_seconds) }}</td></tr>
</table>

{% if stats.failed_contigs %}
<h3 class="warn">Failed contigs</h3>
<table>
  {% for contig, cause in stats.failed_contigs.items() %}
  <tr><th>{{ contig }}</th><td>{{ cause }}</td></tr>
  {% endfor %}
</table>
{% endif %}
{% if stats.cancelled_contigs %}
<p class="warn">Run cancelled; not processed: {{ stats.cancelled_contigs|join(", ") }}</p>
{% endif %}

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Read classes</h3>
    <img src="{{ plots.class_counts }}" alt="read classes">
  </div>
  <div class="card">
    <h3>Confidence</h3>
    <img src="{{ plots.confidence_counts }}" alt="confidence counts">
  </div>
</div>
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Support per call</h3>
    <img src="{{ plots.support_hist }}" alt="support histogram">
  </div>
</div>

<h2>Calls{% if truncated %} (first {{ calls|length }}){% endif %}</h2>
<table>
  <tr><th>Contig</th><th>Position</th><th>Strand</th><th>Family</th><th>Junction</th><th>Anchor</th><th>Confidence</th><th>Interval</th><th>Flanks</th><th>Status</th></tr>
  {% for c in calls %}
  <tr>
    <td>{{ c.contig }}</td><td>{{ c.estimated_position }}</td><td>{{ c.strand }}</td><td>{{ c.te_family }}</td>
    <td>{{ c.junction_support }}</td><td>{{ c.anchor_support }}</td><td>{{ c.confidence }}</td>
    <td>{{ c.interval_start }}-{{ c.interval_end }}</td><td>{{ c.flanks }}</td><td>{{ c.reference_status }}</td>
  </tr>
  {% endfor %}
</table>

<h2>Outputs</h2>
<ul>
  <li><code>{{ calls_path }}</code> (insertion calls, {{ output_format }})</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>HIGH calls have split-read support and discordant-pair support on both flanks.</li>
  <li>LOW calls have no split-read support; their position is the middle of the anchor range.</li>
  <li>Strand "." means the TE orientation evidence was tied.</li>
</ul>

<hr>
<p class="small">TEMapper {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    calls: Sequence[InsertionCall],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        inputs=summary.get("inputs", {}),
        config=summary.get("config", {}),
        stats=summary.get("stats", {}),
        calls_path=summary.get("calls_path"),
        output_format=summary.get("output_format", "tsv"),
        calls=list(calls)[:_MAX_CALL_ROWS],
        truncated=len(calls) > _MAX_CALL_ROWS,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
