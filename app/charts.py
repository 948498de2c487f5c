"""Server-side chart rendering for report exports and shared images."""

from __future__ import annotations

import base64
import io
from typing import Sequence

try:
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt
except Exception:  # pragma: no cover
    matplotlib = None
    plt = None

from app.pareto import ParetoPoint


def fig_to_data_uri(fig) -> str:
    if plt is None:
        return ''
    buf = io.BytesIO()
    fig.savefig(buf, format='png', bbox_inches='tight')
    plt.close(fig)
    buf.seek(0)
    b64 = base64.b64encode(buf.read()).decode('utf-8')
    return f"data:image/png;base64,{b64}"


def render_pareto_chart(points: Sequence[ParetoPoint], title: str = "Rejection Pareto") -> str:
    """Return a bar + cumulative line chart for ``points`` as a PNG data URI."""
    if plt is None or not points:
        return ''

    labels = [point.name for point in points]
    counts = [point.rejection_count for point in points]
    cumulative = [point.cumulative_percentage for point in points]
    positions = range(len(points))

    fig, ax = plt.subplots(figsize=(6, 3.5))
    ax.bar(positions, counts, color="steelblue")
    ax.set_xticks(list(positions))
    ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=7)
    ax.set_ylabel("Rejections")
    ax.set_title(title)

    line_ax = ax.twinx()
    line_ax.plot(list(positions), cumulative, color="darkorange", marker="o")
    line_ax.set_ylim(0, 105)
    line_ax.set_ylabel("Cumulative %")
    fig.tight_layout()
    return fig_to_data_uri(fig)


def render_progress_chart(parts_progress: Sequence[dict], report_date: str) -> str:
    """Horizontal progress bars per part, coloured by share of target met."""
    if plt is None or not parts_progress:
        return ''

    names = [item["name"] for item in parts_progress]
    percents = []
    colors = []
    for item in parts_progress:
        target = item.get("target") or 0
        pct = min(item.get("ok", 0) / target * 100, 100) if target > 0 else 0
        percents.append(pct)
        if pct > 80:
            colors.append("seagreen")
        elif pct >= 50:
            colors.append("goldenrod")
        else:
            colors.append("firebrick")

    fig, ax = plt.subplots(figsize=(5, 0.8 + 0.6 * len(names)))
    ax.barh(range(len(names)), percents, color=colors)
    ax.set_yticks(range(len(names)))
    ax.set_yticklabels(names, fontsize=8)
    ax.set_xlim(0, 100)
    ax.set_xlabel("% of monthly target (OK parts)")
    ax.set_title(f"Inspection progress {report_date}")
    ax.invert_yaxis()
    fig.tight_layout()
    return fig_to_data_uri(fig)
