"""
Convergence diagnostics.

R-hat (the potential scale reduction statistic) is read per scalar
parameter, ``lp__`` included, either from the CmdStan summary table or
computed from raw chain-by-draw arrays with ArviZ.  Values at or above the
threshold are flagged as non-converged.  The threshold is a rule of thumb
(1.1 by default), so it is passed in rather than fixed here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

import arviz as az
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_RHAT_THRESHOLD = 1.1


@dataclass
class ConvergenceReport:
    """R-hat per parameter and the parameters at or above the threshold."""

    rhat: pd.Series
    threshold: float = DEFAULT_RHAT_THRESHOLD
    flagged: List[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return not self.flagged

    @property
    def max_rhat(self) -> float:
        return float(self.rhat.max()) if len(self.rhat) else float("nan")

    def to_dict(self) -> Dict[str, object]:
        return {
            "threshold": self.threshold,
            "converged": self.converged,
            "max_rhat": self.max_rhat,
            "n_parameters": int(len(self.rhat)),
            "flagged": {name: float(self.rhat[name]) for name in self.flagged},
        }

    def describe(self) -> str:
        """One-line description for logs and CLI output."""
        if self.converged:
            return (
                f"all {len(self.rhat)} parameters have R-hat < {self.threshold} "
                f"(max {self.max_rhat:.3f})"
            )
        worst = sorted(self.flagged, key=lambda n: -self.rhat[n])[:5]
        shown = ", ".join(f"{n}={self.rhat[n]:.3f}" for n in worst)
        return (
            f"{len(self.flagged)} of {len(self.rhat)} parameters have "
            f"R-hat ≥ {self.threshold}: {shown}"
        )


def check_rhat(
    rhat: pd.Series, threshold: float = DEFAULT_RHAT_THRESHOLD
) -> ConvergenceReport:
    """
    Flag parameters whose R-hat is at or above *threshold*.

    NaN R-hat (e.g. a constant quantity such as a fixed derived value) is
    not flagged.
    """
    rhat = rhat.astype(float)
    flagged = [str(name) for name, value in rhat.items() if value >= threshold]
    report = ConvergenceReport(rhat=rhat, threshold=threshold, flagged=flagged)
    if report.converged:
        logger.info("Convergence: %s", report.describe())
    else:
        logger.warning(
            "Non-convergence: %s; run more iterations or respecify the model",
            report.describe(),
        )
    return report


def rhat_from_summary(
    summary: pd.DataFrame, threshold: float = DEFAULT_RHAT_THRESHOLD
) -> ConvergenceReport:
    """Convergence report from a CmdStan summary table (``R_hat`` column)."""
    if "R_hat" not in summary.columns:
        raise KeyError("Summary table has no R_hat column")
    return check_rhat(summary["R_hat"], threshold)


def rhat_from_draws(
    draws: Mapping[str, np.ndarray], threshold: float = DEFAULT_RHAT_THRESHOLD
) -> ConvergenceReport:
    """
    Convergence report from raw draws.

    Args:
        draws: Parameter name → array of shape ``(chains, draws)``.
    """
    values = {}
    for name, arr in draws.items():
        arr = np.asarray(arr, dtype=float)
        if arr.ndim != 2:
            raise ValueError(f"{name}: expected (chains, draws), got shape {arr.shape}")
        values[name] = float(az.rhat(arr))
    return check_rhat(pd.Series(values, dtype=float), threshold)
