"""
Real-data example runs.

Fits a case study's Stan program to a subset of a real dataset, checks
R-hat and reports posterior means and intervals for the parameters of
interest.  Unlike the recovery runs there are no generating values to
compare against.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .config import CaseStudyConfig, ConfigError, PARAMETER_FAMILIES
from .data_preparation import StanDataBuilder, wide_to_long
from .datasets import load_counts, load_item_responses
from .diagnostics import ConvergenceReport, rhat_from_summary
from .identification import recode_missing_categories
from .model_estimation import FitResult, ModelEstimation
from .parameter_recovery import parameter_family
from . import visualization

logger = logging.getLogger(__name__)


def posterior_table(
    draws: pd.DataFrame,
    families: Sequence[str],
    interval: float = 0.95,
) -> pd.DataFrame:
    """
    Posterior mean, SD and central interval for every draw column whose
    family is in *families*.
    """
    lower_q = (1 - interval) / 2
    columns = [c for c in draws.columns if parameter_family(c) in families]
    rows = []
    for name in columns:
        values = draws[name].to_numpy(dtype=float)
        lo, hi = np.quantile(values, [lower_q, 1 - lower_q])
        rows.append(
            {
                "parameter": name,
                "mean": float(values.mean()),
                "sd": float(values.std(ddof=1)),
                "lower": float(lo),
                "upper": float(hi),
            }
        )
    return pd.DataFrame(rows, columns=["parameter", "mean", "sd", "lower", "upper"]).set_index("parameter")


@dataclass
class ExampleResult:
    table: pd.DataFrame
    report: ConvergenceReport
    fit: FitResult
    labels: Dict[str, Any]


class ExampleRunner:
    """
    Fit a case study to real data.

    Parameters:
        config (CaseStudyConfig): Needs ``data_file`` and, for item
            response models, the column names.
        estimation (ModelEstimation, optional): Built from the config when
            omitted.
    """

    def __init__(self, config: CaseStudyConfig, estimation: Optional[ModelEstimation] = None):
        if not config.data_file:
            raise ConfigError("The example run needs data_file in the config (or --data)")
        self.config = config
        self.output_dir = Path(config.results_dir) / "example"
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.estimation = estimation or ModelEstimation.from_config(config, self.output_dir)

    def prepare(self) -> tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Load the dataset and build the Stan payload.

        Returns:
            ``(stan_data, labels)`` where *labels* maps Stan indices back to
            column names.
        """
        cfg = self.config
        if cfg.case_study == "glmm":
            data = load_counts(cfg.data_file, cfg.site_column, cfg.year_column, cfg.count_column)
            stan_data = StanDataBuilder().build_counts(data.counts)
            # count_mis[k] is the imputed count for missing_cells[k]
            missing_cells = [
                {"year": data.year_labels[int(y) - 1], "site": data.site_labels[int(s) - 1]}
                for y, s in zip(stan_data["year_mis"], stan_data["site_mis"])
            ]
            return stan_data, {
                "sites": data.site_labels,
                "years": data.year_labels,
                "missing_cells": missing_cells,
            }

        data = load_item_responses(
            cfg.data_file,
            item_columns=cfg.item_columns,
            covariate_columns=cfg.covariate_columns,
            sample_size=cfg.person_sample_size,
            seed=cfg.seed,
        )
        responses = data.responses
        if cfg.is_polytomous and cfg.recode_missing_categories:
            long = wide_to_long(responses)
            recoded = recode_missing_categories(long["y"], long["ii"], responses.shape[1])
            responses = recoded.reshape(responses.shape)

        stan_data = StanDataBuilder(polytomous=cfg.is_polytomous).build_irt(responses, data.W)
        return stan_data, {"items": data.item_labels, "covariates": data.covariate_labels}

    def run(self) -> ExampleResult:
        """Prepare, fit, diagnose and report."""
        stan_data, labels = self.prepare()
        with open(self.output_dir / "labels.json", "w") as f:
            json.dump(labels, f, indent=2)

        fit = self.estimation.run(stan_data, output_dir=self.output_dir)
        report = rhat_from_summary(fit.summary, self.config.rhat_threshold)
        with open(self.output_dir / "convergence.json", "w") as f:
            json.dump(report.to_dict(), f, indent=2)

        table = posterior_table(
            fit.draws, PARAMETER_FAMILIES[self.config.case_study], self.config.interval
        )
        table.to_csv(self.output_dir / "posterior_table.csv")
        with open(self.output_dir / "posterior_table.txt", "w") as f:
            f.write(table.round(3).to_string())
            f.write("\n")
        visualization.posterior_interval_plot(
            table, save_path=str(self.output_dir / "posterior_intervals.png")
        )
        visualization.rhat_plot(report, save_path=str(self.output_dir / "rhat.png"))

        logger.info("Example results saved to %s", self.output_dir)
        return ExampleResult(table=table, report=report, fit=fit, labels=labels)
