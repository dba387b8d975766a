"""
Study Runner — pipeline orchestration for one case study.

Runs the case study end-to-end:
  Step 1 → Simulate data from generating parameters
  Step 2 → Fit, check R-hat and evaluate recovery (repeated over seeds)
  Step 3 → Fit the real dataset and report (when ``data_file`` is set)

Each step writes its outputs under ``config.results_dir``.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .config import CaseStudyConfig
from .data_preparation import save_stan_data
from .examples import ExampleRunner
from .model_estimation import ModelEstimation
from .parameter_recovery import ParameterRecovery
from .study_design import design_from_config

logger = logging.getLogger(__name__)


class CaseStudyRunner:
    """
    End-to-end pipeline for a case study.

    Instantiate with a :class:`CaseStudyConfig`, then call :meth:`run`.
    """

    def __init__(self, config: CaseStudyConfig):
        self.config = config
        self.results_dir = Path(config.results_dir)
        self.results_dir.mkdir(parents=True, exist_ok=True)
        self._estimation: Optional[ModelEstimation] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, skip_example: bool = False) -> Dict[str, Any]:
        """
        Execute the pipeline.

        Args:
            skip_example: Do not fit the real dataset even if configured.

        Returns:
            Summary dict (also saved as ``run_summary.json``).
        """
        run_start = datetime.now(timezone.utc)
        self.config.save_yaml(self.results_dir / "config.yaml")

        summary: Dict[str, Any] = {
            "case_study": self.config.case_study,
            "started_at": run_start.isoformat(),
            "steps": {},
        }

        summary["steps"]["simulate"] = self.simulate()
        summary["steps"]["recovery"] = self.recover()

        if self.config.data_file and not skip_example:
            summary["steps"]["example"] = self.example()
        else:
            logger.info("No real dataset configured; skipping the example step")

        run_end = datetime.now(timezone.utc)
        summary["finished_at"] = run_end.isoformat()
        summary["duration_seconds"] = (run_end - run_start).total_seconds()

        summary_path = self.results_dir / "run_summary.json"
        with open(summary_path, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info("Run complete. Summary: %s", summary_path)
        return summary

    def simulate(self) -> Dict[str, Any]:
        """Simulate one dataset and save it with its generating values."""
        logger.info("═══ Simulate: %s ═══", self.config.case_study)
        design = design_from_config(self.config)
        stan_data = design.generate(seed=self.config.seed)
        design_path = design.save(self.results_dir / "simulation" / "design.json")
        data_path = save_stan_data(stan_data, self.results_dir / "simulation" / "stan_data.json")
        return {
            "design": str(design_path),
            "stan_data": str(data_path),
            "n_true_values": len(design.true_values()),
        }

    def recover(self) -> Dict[str, Any]:
        """Run parameter recovery over ``n_iterations`` seeds."""
        logger.info("═══ Recovery: %s ═══", self.config.case_study)
        recovery = ParameterRecovery(
            design_from_config(self.config),
            self._get_estimation(),
            output_dir=self.results_dir / "recovery",
            n_iterations=self.config.n_iterations,
            interval=self.config.interval,
            rhat_threshold=self.config.rhat_threshold,
            seed=self.config.seed,
        )
        result = recovery.run()
        info = {
            "output_dir": str(recovery.output_dir),
            "coverage": result.coverage["coverage"].to_dict(),
            "all_converged": result.all_converged,
            "max_rhat": [r.max_rhat for r in result.reports],
        }
        if result.imputation_coverage is not None:
            info["imputation_coverage"] = float(result.imputation_coverage.loc["all", "coverage"])
        return info

    def example(self) -> Dict[str, Any]:
        """Fit the configured real dataset."""
        logger.info("═══ Example: %s ═══", self.config.data_file)
        runner = ExampleRunner(self.config, self._get_estimation())
        result = runner.run()
        return {
            "output_dir": str(runner.output_dir),
            "converged": result.report.converged,
            "max_rhat": result.report.max_rhat,
            "n_parameters": len(result.table),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_estimation(self) -> ModelEstimation:
        if self._estimation is None:
            self._estimation = ModelEstimation.from_config(
                self.config, output_dir=self.results_dir / "fits"
            )
        return self._estimation
