"""
Plots for the case studies: recovery discrepancies, R-hat and posterior
interval summaries.

Matplotlib is an optional dependency; all public functions gracefully
degrade (log a warning and return ``None``) when it is unavailable.
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

try:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from matplotlib.figure import Figure

    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False
    logger.warning("matplotlib not available. Plotting disabled.")

# Colorblind-friendly palette (Okabe-Ito)
FAMILY_COLORS = [
    "#0072B2",  # blue
    "#E69F00",  # orange
    "#009E73",  # green
    "#CC79A7",  # pink
    "#D55E00",  # vermillion
    "#56B4E9",  # sky blue
]


def _check_matplotlib() -> bool:
    if not HAS_MATPLOTLIB:
        logger.warning("matplotlib not installed; skipping plot.")
        return False
    return True


def _finish(fig, save_path: Optional[str], label: str):
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        logger.info("%s saved to %s", label, save_path)
        plt.close(fig)
    return fig


def discrepancy_plot(
    table: pd.DataFrame,
    interval: float = 0.95,
    figsize: Optional[Tuple[float, float]] = None,
    save_path: Optional[str] = None,
) -> Optional["Figure"]:
    """
    Posterior mean discrepancy with its interval for every parameter,
    coloured by parameter family, against a zero reference line.

    Args:
        table: Output of ``parameter_recovery.discrepancy_table``.
        interval: Interval width, for the title.
        save_path: If given, save (and close) the figure.
    """
    if not _check_matplotlib():
        return None

    n = len(table)
    fig, ax = plt.subplots(figsize=figsize or (8, max(3.0, 0.18 * n + 1)))
    families = list(dict.fromkeys(table["family"]))

    y = np.arange(n)
    for k, family in enumerate(families):
        mask = (table["family"] == family).to_numpy()
        color = FAMILY_COLORS[k % len(FAMILY_COLORS)]
        ax.hlines(
            y[mask], table["lower"][mask], table["upper"][mask],
            color=color, linewidth=1.5,
        )
        ax.plot(
            table["discrepancy"][mask], y[mask], "o",
            color=color, markersize=3, label=family,
        )

    ax.axvline(0, color="grey", linestyle="--", linewidth=0.8)
    ax.set_yticks(y)
    ax.set_yticklabels(table.index, fontsize=6)
    ax.invert_yaxis()
    ax.set_xlabel("Posterior discrepancy (draw − generating value)")
    covered = table["contains_zero"].mean()
    ax.set_title(
        f"{int(interval * 100)}% discrepancy intervals ({covered:.0%} contain zero)"
    )
    ax.legend(fontsize=8, loc="best")
    return _finish(fig, save_path, "Discrepancy plot")


def rhat_plot(
    report,
    figsize: Tuple[float, float] = (8, 4),
    save_path: Optional[str] = None,
) -> Optional["Figure"]:
    """
    R-hat for every parameter with the flagging threshold drawn in.

    Args:
        report: A ``diagnostics.ConvergenceReport``.
    """
    if not _check_matplotlib():
        return None

    rhat = report.rhat.dropna()
    fig, ax = plt.subplots(figsize=figsize)
    colors = np.where(rhat.to_numpy() >= report.threshold, "#D55E00", "#0072B2")
    ax.scatter(np.arange(len(rhat)), rhat.to_numpy(), c=colors, s=8)
    ax.axhline(report.threshold, color="#D55E00", linestyle="--", linewidth=0.8,
               label=f"threshold {report.threshold}")
    ax.set_xlabel("Parameter")
    ax.set_ylabel("R-hat")
    ax.set_title(f"R-hat ({len(report.flagged)} flagged)")
    ax.legend(fontsize=8)
    return _finish(fig, save_path, "R-hat plot")


def posterior_interval_plot(
    table: pd.DataFrame,
    figsize: Optional[Tuple[float, float]] = None,
    save_path: Optional[str] = None,
) -> Optional["Figure"]:
    """
    Posterior means with interval bounds, e.g. for a real-data example.

    Args:
        table: DataFrame indexed by parameter with ``mean``, ``lower`` and
            ``upper`` columns.
    """
    if not _check_matplotlib():
        return None

    n = len(table)
    fig, ax = plt.subplots(figsize=figsize or (7, max(3.0, 0.2 * n + 1)))
    y = np.arange(n)
    ax.hlines(y, table["lower"], table["upper"], color=FAMILY_COLORS[0], linewidth=1.5)
    ax.plot(table["mean"], y, "o", color=FAMILY_COLORS[0], markersize=3)
    ax.set_yticks(y)
    ax.set_yticklabels(table.index, fontsize=7)
    ax.invert_yaxis()
    ax.set_xlabel("Posterior")
    ax.set_title("Posterior means and intervals")
    return _finish(fig, save_path, "Posterior interval plot")
