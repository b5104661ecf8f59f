from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

logger = logging.getLogger(__name__)


def _bar_png(
    labels: Sequence[str],
    values: Sequence[int],
    *,
    out_png: str | Path,
    title: str,
    ylabel: str,
    xlabel: str | None = None,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    plt.bar(range(len(labels)), [int(v) for v in values])
    plt.xticks(range(len(labels)), list(labels), rotation=15, ha="right")
    if xlabel:
        plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
    logger.debug("Wrote plot %s", out_png)


def plot_class_counts(
    *,
    reads_classified: Mapping[str, int],
    discard_reasons: Mapping[str, int],
    out_png: str | Path,
    title: str = "Read classes",
) -> None:
    """Bar chart of JUNCTION/ANCHOR counts plus DISCARD split by reason."""
    labels = ["JUNCTION", "ANCHOR"]
    values = [int(reads_classified.get("JUNCTION", 0)), int(reads_classified.get("ANCHOR", 0))]
    for reason in sorted(discard_reasons):
        labels.append(f"DISCARD:{reason}")
        values.append(int(discard_reasons[reason]))
    _bar_png(labels, values, out_png=out_png, title=title, ylabel="Read count")


def plot_confidence_counts(
    *,
    calls_by_confidence: Mapping[str, int],
    out_png: str | Path,
    title: str = "Calls per confidence tier",
) -> None:
    labels = ["LOW", "MEDIUM", "HIGH"]
    values = [int(calls_by_confidence.get(k, 0)) for k in labels]
    _bar_png(labels, values, out_png=out_png, title=title, ylabel="Call count")


def plot_support_hist(
    *,
    support_hist: Mapping[int, int],
    out_png: str | Path,
    title: str = "Read support per call",
    max_bin: int = 30,
) -> None:
    # Collapse tail into max_bin+
    xs = list(range(1, max_bin + 1))
    ys = [0] * len(xs)
    tail = 0
    for k, v in support_hist.items():
        k = int(k)
        if k < 1:
            continue
        if k <= max_bin:
            ys[k - 1] += int(v)
        else:
            tail += int(v)

    labels = [str(x) for x in xs]
    if tail > 0:
        labels.append(f"{max_bin + 1}+")
        ys.append(tail)

    _bar_png(labels, ys, out_png=out_png, title=title, ylabel="Call count", xlabel="Junction + anchor reads")


def write_plots(summary: Dict[str, object], plots_dir: str | Path) -> Dict[str, str]:
    """Render all run plots; return plot name -> path relative to the outdir."""
    plots_dir = Path(plots_dir)
    stats = summary["stats"]
    assert isinstance(stats, dict)
    hist = summary.get("support_hist") or {}
    assert isinstance(hist, dict)

    out = {
        "class_counts": plots_dir / "class_counts.png",
        "confidence_counts": plots_dir / "confidence_counts.png",
        "support_hist": plots_dir / "support_hist.png",
    }
    plot_class_counts(
        reads_classified=stats["reads_classified"],
        discard_reasons=stats["discard_reasons"],
        out_png=out["class_counts"],
    )
    plot_confidence_counts(calls_by_confidence=stats["calls_by_confidence"], out_png=out["confidence_counts"])
    plot_support_hist(support_hist=hist, out_png=out["support_hist"])
    return {k: str(Path(plots_dir.name) / v.name) for k, v in out.items()}
