"""
Model Estimation for the case studies

This module hands a Stan program and a data payload to CmdStan and
collects what the rest of the workflow needs from the fit:

1. Compiling the Stan model
2. Running MCMC sampling with the configured run controls
3. Saving the input data, posterior summary and CmdStan diagnostics
4. Exposing the summary table and draws for diagnostics and recovery

Example usage:
    from irt_case_studies.model_estimation import ModelEstimation
    estimation = ModelEstimation(model_path="models/rasch_latent_reg.stan")
    result = estimation.run(stan_data)
    result.summary.loc["beta[1]", "Mean"]

The sampler itself is an external collaborator: failures are reported as
``InferenceError`` and never retried.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from cmdstanpy import CmdStanModel

from .data_preparation import save_stan_data

logger = logging.getLogger(__name__)

# Percentiles requested from the CmdStan summary (central 95% interval)
SUMMARY_PERCENTILES = (2.5, 50, 97.5)


class InferenceError(RuntimeError):
    """Raised when CmdStan fails to compile or sample a model."""
    pass


@dataclass
class FitResult:
    """
    What a single sampling run produced.

    Attributes:
        fit: The ``CmdStanMCMC`` object.
        summary: CmdStan summary table indexed by parameter name
            (``Mean``, ``2.5%``, ``50%``, ``97.5%``, ``R_hat`` ...).
        draws: Post-warmup draws, one column per parameter plus
            ``chain__``, ``iter__`` and ``draw__``.
        output_dir: Where the run's files were written.
    """

    fit: Any
    summary: pd.DataFrame
    draws: pd.DataFrame
    output_dir: Path
    diagnostics: str = ""
    run_controls: Dict[str, Any] = field(default_factory=dict)

    def parameter_draws(self, name: str) -> np.ndarray:
        """Draws for one scalar parameter, e.g. ``"beta[3]"``."""
        if name not in self.draws.columns:
            raise KeyError(f"No draws for parameter {name}")
        return self.draws[name].to_numpy()

    def chain_draws(self, names: Sequence[str]) -> Dict[str, np.ndarray]:
        """Draws reshaped to ``(chains, draws)`` per parameter."""
        n_chains = int(self.draws["chain__"].nunique())
        out = {}
        for name in names:
            values = self.draws.sort_values(["chain__", "iter__"])[name].to_numpy()
            out[name] = values.reshape(n_chains, -1)
        return out


class ModelEstimation:
    """
    Bayesian model estimation workflow.

    Parameters:
        model_path (str | Path): Path to the Stan program.
        output_dir (str | Path, optional): Directory to save results.
            Defaults to a timestamped ``results/estimation/run_YYYYMMDD_HHMMSS``.
        chains (int): Number of MCMC chains.
        parallel_chains (int): Chains CmdStan runs at once.
        iter_warmup (int): Warmup iterations per chain.
        iter_sampling (int): Post-warmup draws per chain.
        seed (int, optional): Sampler seed.

    Usage:
        estimation = ModelEstimation(model_path="models/gpcm_latent_reg.stan")
        result = estimation.run(stan_data)
    """

    def __init__(
        self,
        model_path,
        output_dir=None,
        chains: int = 4,
        parallel_chains: int = 4,
        iter_warmup: int = 500,
        iter_sampling: int = 500,
        seed: Optional[int] = None,
    ):
        self.model_path = Path(model_path)
        self.chains = chains
        self.parallel_chains = parallel_chains
        self.iter_warmup = iter_warmup
        self.iter_sampling = iter_sampling
        self.seed = seed

        if not self.model_path.exists():
            raise FileNotFoundError(f"Stan model not found: {self.model_path}")

        if output_dir is None:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            self.output_dir = (
                Path(__file__).resolve().parent.parent
                / "results"
                / "estimation"
                / f"run_{timestamp}"
            )
        else:
            self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Compiling Stan model: %s", self.model_path)
        try:
            self.model = CmdStanModel(stan_file=str(self.model_path))
        except (RuntimeError, ValueError) as e:
            raise InferenceError(f"Could not compile {self.model_path.name}: {e}") from e

    @classmethod
    def from_config(cls, config, output_dir=None) -> "ModelEstimation":
        """Build from a :class:`~irt_case_studies.config.CaseStudyConfig`."""
        return cls(
            model_path=config.model_path,
            output_dir=output_dir or config.results_dir,
            seed=config.seed,
            **config.sampler_kwargs(),
        )

    def run_controls(self, seed: Optional[int] = None) -> Dict[str, Any]:
        return {
            "chains": self.chains,
            "parallel_chains": self.parallel_chains,
            "iter_warmup": self.iter_warmup,
            "iter_sampling": self.iter_sampling,
            "seed": self.seed if seed is None else seed,
        }

    def run(
        self,
        data: Dict[str, Any],
        output_dir=None,
        seed: Optional[int] = None,
    ) -> FitResult:
        """
        Sample the model and save the fit's summary and diagnostics.

        Args:
            data: Stan data dict matching the program's data block.
            output_dir: Overrides the estimation's output directory.
            seed: Overrides the estimation's sampler seed.

        Returns:
            FitResult

        Raises:
            InferenceError: If CmdStan rejects the data or sampling fails.
        """
        out = Path(output_dir) if output_dir is not None else self.output_dir
        out.mkdir(parents=True, exist_ok=True)

        save_stan_data(data, out / "input_data.json")

        controls = self.run_controls(seed)
        logger.info(
            "Sampling %s: %d chains x %d draws (warmup %d)",
            self.model_path.stem,
            controls["chains"],
            controls["iter_sampling"],
            controls["iter_warmup"],
        )
        try:
            fit = self.model.sample(
                data=str(out / "input_data.json"),
                show_progress=False,
                **controls,
            )
        except (RuntimeError, ValueError) as e:
            logger.error("Sampling failed for %s: %s", self.model_path.stem, e)
            raise InferenceError(f"Sampling failed for {self.model_path.stem}: {e}") from e

        summary = fit.summary(percentiles=SUMMARY_PERCENTILES)
        summary.to_csv(out / "posterior_summary.csv")

        diagnostics = fit.diagnose() or ""
        with open(out / "diagnostics.txt", "w") as f:
            f.write(diagnostics)

        return FitResult(
            fit=fit,
            summary=summary,
            draws=fit.draws_pd(),
            output_dir=out,
            diagnostics=diagnostics,
            run_controls=controls,
        )
