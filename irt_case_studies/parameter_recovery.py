"""
Parameter Recovery Analysis

Checks that a model can recover the values it was simulated from:

1. Simulate a dataset from a design with known generating parameters
2. Fit the Stan program to the simulated data
3. Check R-hat for every parameter
4. For each parameter of interest, form the posterior discrepancy
   (draw minus generating value) and its central interval
5. Repeat over several seeds and summarise how often the interval
   contains zero

A model recovers its parameters well when most discrepancy intervals
include zero.  This is a visual aid rather than a pass/fail oracle.

Examples:
    design = ItemResponseDesign(model="gpcm")
    estimation = ModelEstimation(model_path="models/gpcm_latent_reg.stan")
    recovery = ParameterRecovery(design, estimation, n_iterations=5)
    result = recovery.run()
    result.coverage
"""
from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd
from tqdm import tqdm

from .diagnostics import ConvergenceReport, DEFAULT_RHAT_THRESHOLD, rhat_from_summary
from . import visualization

logger = logging.getLogger(__name__)


def parameter_family(name: str) -> str:
    """``"beta[3]"`` → ``"beta"``."""
    return name.split("[", 1)[0]


def discrepancy_table(
    draws: pd.DataFrame | Mapping[str, np.ndarray],
    true_values: Mapping[str, float],
    interval: float = 0.95,
) -> pd.DataFrame:
    """
    Posterior discrepancy from the generating value, per parameter.

    Args:
        draws: Posterior draws, one column (or mapping entry) per parameter.
        true_values: Generating value per parameter name.
        interval: Width of the central interval.

    Returns:
        DataFrame indexed by parameter with columns ``family``, ``true``,
        ``posterior_mean``, ``discrepancy``, ``lower``, ``upper`` and
        ``contains_zero``.

    Raises:
        KeyError: If a parameter with a true value has no draws.
    """
    lower_q = (1 - interval) / 2
    upper_q = 1 - lower_q

    rows = []
    for name, true in true_values.items():
        if name not in draws:
            raise KeyError(f"No posterior draws for {name}")
        diff = np.asarray(draws[name], dtype=float) - true
        lo, hi = np.quantile(diff, [lower_q, upper_q])
        rows.append(
            {
                "parameter": name,
                "family": parameter_family(name),
                "true": float(true),
                "posterior_mean": float(np.mean(diff) + true),
                "discrepancy": float(np.mean(diff)),
                "lower": float(lo),
                "upper": float(hi),
                "contains_zero": bool(lo <= 0.0 <= hi),
            }
        )
    return pd.DataFrame(rows).set_index("parameter")


def coverage_summary(table: pd.DataFrame) -> pd.DataFrame:
    """
    Share of discrepancy intervals containing zero, per parameter family
    and overall (row ``"all"``).
    """
    grouped = table.groupby("family")
    summary = pd.DataFrame(
        {
            "n": grouped.size(),
            "coverage": grouped["contains_zero"].mean(),
            "mean_abs_discrepancy": grouped["discrepancy"].apply(lambda d: d.abs().mean()),
        }
    )
    summary.loc["all"] = [
        len(table),
        table["contains_zero"].mean(),
        table["discrepancy"].abs().mean(),
    ]
    summary["n"] = summary["n"].astype(int)
    return summary


@dataclass
class RecoveryResult:
    """
    Per-iteration discrepancy tables, convergence reports and coverage.

    For designs with withheld cells (the GLMM) ``imputation_tables`` compare
    the imputed draws with the withheld simulated counts; ``contains_zero``
    then means the withheld count lies inside the predictive interval.
    """

    tables: List[pd.DataFrame] = field(default_factory=list)
    reports: List[ConvergenceReport] = field(default_factory=list)
    coverage: Optional[pd.DataFrame] = None
    imputation_tables: List[pd.DataFrame] = field(default_factory=list)
    imputation_coverage: Optional[pd.DataFrame] = None
    output_dir: Optional[Path] = None

    @property
    def combined(self) -> pd.DataFrame:
        return pd.concat(
            [t.assign(iteration=i + 1) for i, t in enumerate(self.tables)]
        )

    @property
    def all_converged(self) -> bool:
        return all(r.converged for r in self.reports)


class ParameterRecovery:
    """
    Simulate → fit → diagnose → compare, repeated over seeds.

    Attributes:
        design: An ``ItemResponseDesign`` or ``CountDesign``.
        estimation: A ``ModelEstimation`` for the matching Stan program.
        output_dir (Path): Where results are saved.
        n_iterations (int): Number of simulation-recovery iterations.
        interval (float): Width of the discrepancy interval.
        rhat_threshold (float): R-hat flagging threshold.
        seed (int): Base seed; iteration ``k`` simulates with ``seed + k``.
    """

    def __init__(
        self,
        design,
        estimation,
        output_dir=None,
        n_iterations: int = 1,
        interval: float = 0.95,
        rhat_threshold: float = DEFAULT_RHAT_THRESHOLD,
        seed: int = 12345,
    ):
        self.design = design
        self.estimation = estimation
        self.n_iterations = n_iterations
        self.interval = interval
        self.rhat_threshold = rhat_threshold
        self.seed = seed

        if output_dir is None:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            self.output_dir = (
                Path(__file__).resolve().parent.parent
                / "results"
                / "parameter_recovery"
                / f"run_{timestamp}"
            )
        else:
            self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def run(self) -> RecoveryResult:
        """
        Run the recovery analysis over all iterations.

        Returns:
            RecoveryResult
        """
        result = RecoveryResult(output_dir=self.output_dir)
        all_true_params = []

        logger.info(
            "Running %d iteration(s) of parameter recovery for %s",
            self.n_iterations,
            self.design.model,
        )
        for iteration in tqdm(range(self.n_iterations), disable=self.n_iterations < 2):
            iter_dir = self.output_dir / f"iteration_{iteration + 1}"
            iter_dir.mkdir(parents=True, exist_ok=True)

            data = self.design.generate(seed=self.seed + iteration)
            true_values = self.design.true_values()
            all_true_params.append(true_values)
            with open(iter_dir / "true_parameters.json", "w") as f:
                json.dump(true_values, f, indent=2)

            fit = self.estimation.run(
                data, output_dir=iter_dir, seed=54321 + iteration
            )
            report = rhat_from_summary(fit.summary, self.rhat_threshold)
            with open(iter_dir / "convergence.json", "w") as f:
                json.dump(report.to_dict(), f, indent=2)

            table = discrepancy_table(fit.draws, true_values, self.interval)
            table.to_csv(iter_dir / "discrepancy.csv")

            withheld_values = getattr(self.design, "withheld_values", None)
            withheld = withheld_values() if withheld_values else {}
            if withheld:
                imputed = discrepancy_table(fit.draws, withheld, self.interval)
                imputed.to_csv(iter_dir / "imputation.csv")
                result.imputation_tables.append(imputed.assign(iteration=iteration + 1))

            visualization.discrepancy_plot(
                table,
                interval=self.interval,
                save_path=str(iter_dir / "discrepancy.png"),
            )
            visualization.rhat_plot(
                report, save_path=str(iter_dir / "rhat.png")
            )

            result.tables.append(table)
            result.reports.append(report)

        with open(self.output_dir / "all_true_parameters.json", "w") as f:
            json.dump(all_true_params, f, indent=2)

        result.coverage = coverage_summary(result.combined)
        result.coverage.to_csv(self.output_dir / "coverage_summary.csv")
        result.combined.to_csv(self.output_dir / "all_discrepancies.csv")

        if result.imputation_tables:
            result.imputation_coverage = coverage_summary(pd.concat(result.imputation_tables))
            result.imputation_coverage.to_csv(self.output_dir / "imputation_coverage.csv")
            logger.info(
                "Imputation: %.0f%% of %d withheld counts fall inside their predictive interval",
                100 * result.imputation_coverage.loc["all", "coverage"],
                int(result.imputation_coverage.loc["all", "n"]),
            )

        logger.info(
            "Recovery: %.0f%% of %d intervals contain zero; %d/%d fits converged",
            100 * result.coverage.loc["all", "coverage"],
            int(result.coverage.loc["all", "n"]),
            sum(r.converged for r in result.reports),
            len(result.reports),
        )
        return result
