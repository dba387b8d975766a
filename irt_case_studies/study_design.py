"""
Simulation designs for the case studies.

A design holds the generating ("true") parameter values and the covariate
structure for one case study, simulates a dataset from them with a seeded
generator, and hands back a Stan data dict plus the true values keyed by
Stan variable name.

Usage:
    design = ItemResponseDesign(model="gpcm", n_items=20, n_persons=500)
    stan_data = design.generate(seed=1)
    design.true_values()        # {"alpha[1]": 0.8, "beta[1]": -2.0, ...}
    design.save("results/designs/gpcm.json")

    # From a case study config
    design = design_from_config(config)
"""
from __future__ import annotations

import datetime
import json
import logging
from itertools import cycle, islice
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .config import CaseStudyConfig, IRT_MODELS, POLYTOMOUS_MODELS
from .data_preparation import StanDataBuilder, make_serializable
from .identification import PayloadError, center, split_steps, steps_per_item
from .simulation import (
    simulate_abilities,
    simulate_counts,
    simulate_dichotomous,
    simulate_partial_credit,
)

logger = logging.getLogger(__name__)


def _stan_names(name: str, values: Sequence[float]) -> Dict[str, float]:
    return {f"{name}[{k + 1}]": float(v) for k, v in enumerate(values)}


class ItemResponseDesign:
    """
    Generate item response data from known parameters.

    Parameters:
        model (str): "rasch", "2pl", "pcm" or "gpcm".
        n_items (int): Number of items I.
        n_persons (int): Number of persons J.
        n_steps (int): Steps per item (partial credit models only).
        difficulty_range (tuple): Endpoints of the linearly spaced difficulties.
        step_spread (float): Distance between an item's first and last step.
        discriminations (list): Values cycled across items (2PL / GPCM).
        latent_regression (bool): If False, abilities are standard normal.
        lambda_true (list): Regression coefficients, intercept first; its
            length sets the number of covariate columns K.
        sigma (float): Residual SD of ability (Rasch / PCM only; 1 otherwise).

    Attributes (after generate):
        W (ndarray): J×K covariate matrix, first column the intercept.
        theta (ndarray): Person abilities.  For 2PL / GPCM these are standard
            normal and the regression mean is held in ``regression_mean``.
        regression_mean (ndarray | None): ``W @ lambda`` for 2PL / GPCM.
        beta (ndarray): Difficulties (dichotomous) or flattened steps; sums to zero.
        alpha (ndarray | None): Discriminations.
        responses (ndarray): J×I score matrix.
    """

    def __init__(
        self,
        model: str = "rasch",
        n_items: int = 20,
        n_persons: int = 500,
        n_steps: int = 2,
        difficulty_range: Sequence[float] = (-1.5, 1.5),
        step_spread: float = 1.0,
        discriminations: Sequence[float] = (0.8, 1.0, 1.2),
        latent_regression: bool = True,
        lambda_true: Sequence[float] = (0.5, 0.5, -0.5),
        sigma: float = 1.0,
    ):
        if model not in IRT_MODELS:
            raise ValueError(f"Not an item response model: {model}")
        self.model = model
        self.I = n_items
        self.J = n_persons
        self.n_steps = n_steps if model in POLYTOMOUS_MODELS else 1
        self.difficulty_range = tuple(difficulty_range)
        self.step_spread = step_spread
        self.discriminations = list(discriminations)
        self.latent_regression = latent_regression
        self.lambda_true = np.asarray(lambda_true if latent_regression else [0.0], dtype=float)
        self.sigma = sigma if model in ("rasch", "pcm") else 1.0
        self.seed: Optional[int] = None

        self.alpha = self._item_discriminations()
        self.beta = self._item_difficulties()

    @property
    def polytomous(self) -> bool:
        return self.model in POLYTOMOUS_MODELS

    @property
    def K(self) -> int:
        return int(self.lambda_true.size)

    # ------------------------------------------------------------------
    # Generating parameters
    # ------------------------------------------------------------------

    def _item_discriminations(self) -> Optional[np.ndarray]:
        if self.model not in ("2pl", "gpcm"):
            return None
        return np.array(list(islice(cycle(self.discriminations), self.I)), dtype=float)

    def _item_difficulties(self) -> np.ndarray:
        """
        Linearly spaced item difficulties; for partial credit items each
        difficulty is spread into ``n_steps`` equally spaced steps.  The
        flattened vector is centred so it satisfies the sum-to-zero
        identification the Stan programs impose.
        """
        low, high = self.difficulty_range
        difficulty = np.linspace(low, high, self.I)
        if not self.polytomous:
            return center(difficulty)
        if self.n_steps == 1:
            offsets = np.zeros(1)
        else:
            offsets = np.linspace(-self.step_spread / 2, self.step_spread / 2, self.n_steps)
        return center((difficulty[:, None] + offsets[None, :]).ravel())

    def item_steps(self) -> List[np.ndarray]:
        """Per-item step difficulties (one element per item for dichotomous models)."""
        return split_steps(self.beta, np.full(self.I, self.n_steps))

    def _generate_covariates(self, rng: np.random.Generator) -> np.ndarray:
        """
        Intercept followed by K-1 covariates alternating between a standard
        normal and a Bernoulli(0.5) indicator.
        """
        columns = [np.ones(self.J)]
        for k in range(1, self.K):
            if k % 2 == 1:
                columns.append(rng.standard_normal(self.J))
            else:
                columns.append(rng.binomial(1, 0.5, self.J).astype(float))
        return np.column_stack(columns)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def generate(self, seed: Optional[int] = None) -> Dict[str, Any]:
        """
        Simulate covariates, abilities and responses.

        Returns:
            dict: Stan-compatible data dictionary.

        Raises:
            PayloadError: If a partial credit item ends up with an empty
                category, which would change the number of steps the Stan
                program allocates.  Increase ``n_persons`` or narrow the
                difficulties.
        """
        self.seed = seed
        rng = np.random.default_rng(seed)

        self.W = self._generate_covariates(rng)
        if self.alpha is None:
            self.regression_mean = None
            self.theta = simulate_abilities(self.W, self.lambda_true, self.sigma, rng)
        else:
            # The discrimination scales theta only; W·lambda enters the terms unscaled
            self.regression_mean = self.W @ self.lambda_true
            self.theta = rng.standard_normal(self.J)

        ii = np.tile(np.arange(1, self.I + 1), self.J)
        jj = np.repeat(np.arange(1, self.J + 1), self.I)
        if self.polytomous:
            y = simulate_partial_credit(
                self.theta, self.item_steps(), ii, jj, rng, self.alpha, self.regression_mean
            )
            observed_steps = steps_per_item(y, ii, self.I)
            short = np.flatnonzero(observed_steps < self.n_steps) + 1
            if short.size:
                raise PayloadError(
                    f"Items {short.tolist()} never reached their top category; "
                    "increase n_persons or narrow difficulty_range"
                )
        else:
            y = simulate_dichotomous(
                self.theta, self.beta, ii, jj, rng, self.alpha, self.regression_mean
            )
        self.responses = y.reshape(self.J, self.I)

        self.metadata = self._generate_metadata()
        logger.debug("Generated %s design with seed %s", self.model, seed)
        return self.get_data_dict()

    def _generate_metadata(self) -> Dict[str, Any]:
        if not hasattr(self, "responses"):
            raise ValueError("Cannot generate metadata before generating data")
        scores = self.responses
        return {
            "timestamp": datetime.datetime.now().isoformat(),
            "seed": self.seed,
            "mean_score_per_item": scores.mean(axis=0).round(3).tolist(),
            "theta_mean": float(self.theta.mean()),
            "theta_sd": float(self.theta.std()),
        }

    def get_data_dict(self) -> Dict[str, Any]:
        """Stan data dictionary for the simulated responses."""
        if not hasattr(self, "responses"):
            self.generate(self.seed)
        return StanDataBuilder(polytomous=self.polytomous).build_irt(self.responses, self.W)

    def true_values(self) -> Dict[str, float]:
        """Generating values keyed by Stan variable name."""
        values = _stan_names("beta", self.beta)
        if self.alpha is not None:
            values.update(_stan_names("alpha", self.alpha))
        if self.latent_regression:
            values.update(_stan_names("lambda", self.lambda_true))
        if self.model in ("rasch", "pcm"):
            values["sigma"] = float(self.sigma)
        return values

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "item_response",
            "config": {
                "model": self.model,
                "n_items": self.I,
                "n_persons": self.J,
                "n_steps": self.n_steps,
                "difficulty_range": list(self.difficulty_range),
                "step_spread": self.step_spread,
                "discriminations": self.discriminations,
                "latent_regression": self.latent_regression,
                "lambda_true": self.lambda_true.tolist(),
                "sigma": self.sigma,
            },
            "seed": self.seed,
            "true_values": self.true_values(),
        }

    def save(self, filepath: str | Path, include_data: bool = True) -> Path:
        """
        Save the design (and optionally the simulated Stan data) to JSON.
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_dict()
        if include_data and hasattr(self, "responses"):
            payload["stan_data"] = self.get_data_dict()
            payload["metadata"] = self.metadata
        with open(filepath, "w") as f:
            json.dump(make_serializable(payload), f, indent=2)
        logger.info("Saved design to %s", filepath)
        return filepath

    @classmethod
    def load(cls, filepath: str | Path) -> "ItemResponseDesign":
        """Rebuild a design from :meth:`save` output and re-simulate its data."""
        with open(filepath) as f:
            payload = json.load(f)
        design = cls(**payload["config"])
        if payload.get("seed") is not None:
            design.generate(payload["seed"])
        return design


class CountDesign:
    """
    Generate site × year counts for the Poisson GLMM with missing cells.

    Parameters:
        n_sites (int): Number of sites.
        n_years (int): Number of years.
        mu (float): Grand mean on the log scale.
        sd_site (float): SD of site effects.
        sd_year (float): SD of year effects.
        missing_rate (float): Share of (year, site) cells withheld.
    """

    model = "glmm"

    def __init__(
        self,
        n_sites: int = 30,
        n_years: int = 10,
        mu: float = 1.5,
        sd_site: float = 0.8,
        sd_year: float = 0.3,
        missing_rate: float = 0.2,
    ):
        self.n_sites = n_sites
        self.n_years = n_years
        self.mu = mu
        self.sd_site = sd_site
        self.sd_year = sd_year
        self.missing_rate = missing_rate
        self.seed: Optional[int] = None

    def generate(self, seed: Optional[int] = None) -> Dict[str, Any]:
        """Simulate effects, counts and the missingness pattern."""
        self.seed = seed
        rng = np.random.default_rng(seed)
        self.site_effect = rng.normal(0.0, self.sd_site, self.n_sites)
        self.year_effect = rng.normal(0.0, self.sd_year, self.n_years)
        self.full_counts = simulate_counts(self.mu, self.site_effect, self.year_effect, rng)

        self.missing = rng.random(self.full_counts.shape) < self.missing_rate
        if self.missing.all():
            self.missing.flat[0] = False
        self.counts = np.where(self.missing, np.nan, self.full_counts.astype(float))
        logger.debug(
            "Generated count design: %d of %d cells missing",
            int(self.missing.sum()),
            self.missing.size,
        )
        return self.get_data_dict()

    def get_data_dict(self) -> Dict[str, Any]:
        if not hasattr(self, "counts"):
            self.generate(self.seed)
        return StanDataBuilder().build_counts(self.counts)

    def true_values(self) -> Dict[str, float]:
        values = {
            "mu": float(self.mu),
            "sd_site": float(self.sd_site),
            "sd_year": float(self.sd_year),
        }
        if hasattr(self, "site_effect"):
            values.update(_stan_names("site_effect", self.site_effect))
            values.update(_stan_names("year_effect", self.year_effect))
        return values

    def withheld_values(self) -> Dict[str, float]:
        """
        Simulated counts of the missing cells keyed as ``count_mis[k]``.

        Cells are in the row-major (year, site) order ``build_counts`` uses
        for ``year_mis`` / ``site_mis``, so they line up with the Stan
        program's imputed draws.
        """
        if not hasattr(self, "full_counts"):
            return {}
        return _stan_names("count_mis", self.full_counts[self.missing])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "count",
            "config": {
                "n_sites": self.n_sites,
                "n_years": self.n_years,
                "mu": self.mu,
                "sd_site": self.sd_site,
                "sd_year": self.sd_year,
                "missing_rate": self.missing_rate,
            },
            "seed": self.seed,
            "true_values": self.true_values(),
        }

    def save(self, filepath: str | Path, include_data: bool = True) -> Path:
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_dict()
        if include_data and hasattr(self, "counts"):
            payload["stan_data"] = self.get_data_dict()
            payload["missing_counts"] = self.full_counts[self.missing]
        with open(filepath, "w") as f:
            json.dump(make_serializable(payload), f, indent=2)
        logger.info("Saved design to %s", filepath)
        return filepath

    @classmethod
    def load(cls, filepath: str | Path) -> "CountDesign":
        with open(filepath) as f:
            payload = json.load(f)
        design = cls(**payload["config"])
        if payload.get("seed") is not None:
            design.generate(payload["seed"])
        return design


def design_from_config(config: CaseStudyConfig):
    """Build the simulation design a case study config describes."""
    if config.case_study == "glmm":
        return CountDesign(
            n_sites=config.n_sites,
            n_years=config.n_years,
            mu=config.mu,
            sd_site=config.sd_site,
            sd_year=config.sd_year,
            missing_rate=config.missing_rate,
        )
    return ItemResponseDesign(
        model=config.case_study,
        n_items=config.n_items,
        n_persons=config.n_persons,
        n_steps=config.n_steps,
        difficulty_range=config.difficulty_range,
        step_spread=config.step_spread,
        discriminations=config.discriminations,
        latent_regression=config.latent_regression,
        lambda_true=config.lambda_true,
        sigma=config.sigma,
    )
