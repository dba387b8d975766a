"""
Configuration module for the IRT / GLMM case studies.

Defines CaseStudyConfig dataclass with validation and YAML loading.
"""
from __future__ import annotations

import logging
import yaml
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional, Any, Dict

logger = logging.getLogger(__name__)

# Default paths relative to this module
_MODULE_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_DIR = _MODULE_DIR / "configs"
DEFAULT_MODELS_DIR = _MODULE_DIR.parent / "models"

# Case study name -> Stan program file name
MODEL_FILES = {
    "rasch": "rasch_latent_reg.stan",
    "2pl": "2pl_latent_reg.stan",
    "pcm": "pcm_latent_reg.stan",
    "gpcm": "gpcm_latent_reg.stan",
    "glmm": "glmm_poisson_missing.stan",
}

# Parameter families reported for each case study
PARAMETER_FAMILIES = {
    "rasch": ("beta", "lambda", "sigma"),
    "2pl": ("alpha", "beta", "lambda"),
    "pcm": ("beta", "lambda", "sigma"),
    "gpcm": ("alpha", "beta", "lambda"),
    "glmm": ("mu", "sd_site", "sd_year", "site_effect", "year_effect", "count_mis"),
}

DICHOTOMOUS_MODELS = ("rasch", "2pl")
POLYTOMOUS_MODELS = ("pcm", "gpcm")
IRT_MODELS = DICHOTOMOUS_MODELS + POLYTOMOUS_MODELS


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class CaseStudyConfig:
    """
    Configuration for one case study run.

    Attributes:
        case_study: Model family ("rasch", "2pl", "pcm", "gpcm" or "glmm").
        seed: Random seed for the simulator and the sampler.
        n_items: Number of items (IRT).
        n_persons: Number of persons (IRT).
        n_steps: Step difficulties per item (partial credit models).
        difficulty_range: Endpoints of the linearly spaced item difficulties.
        step_spread: Distance between an item's first and last step.
        discriminations: Values cycled across items (2PL / GPCM).
        latent_regression: If False, abilities are standard normal draws.
        lambda_true: Generating regression coefficients (intercept first).
        sigma: Generating residual SD of ability (Rasch / PCM).
        n_sites: Number of sites (GLMM).
        n_years: Number of years (GLMM).
        mu: Generating grand mean on the log scale (GLMM).
        sd_site: Generating SD of site effects (GLMM).
        sd_year: Generating SD of year effects (GLMM).
        missing_rate: Share of (year, site) cells withheld (GLMM).
        chains: Number of MCMC chains.
        parallel_chains: Chains run in parallel by CmdStan.
        iter_warmup: Warmup iterations per chain.
        iter_sampling: Post-warmup draws per chain.
        n_iterations: Simulate/fit repetitions for parameter recovery.
        rhat_threshold: R-hat at or above which a parameter is flagged.
        interval: Width of the central posterior interval.
        data_file: Tabular file for the real-data example.
        item_columns: Response columns of the real dataset.
        covariate_columns: Person covariate columns (intercept is added).
        person_sample_size: Rows sampled from the real dataset (None = all).
        site_column / year_column / count_column: Long-form count columns.
        recode_missing_categories: Collapse unused response categories.
        models_dir: Directory holding the Stan programs.
        results_dir: Directory for outputs.
    """

    case_study: str = "rasch"
    seed: int = 42

    # Item response design
    n_items: int = 20
    n_persons: int = 500
    n_steps: int = 2
    difficulty_range: List[float] = field(default_factory=lambda: [-1.5, 1.5])
    step_spread: float = 1.0
    discriminations: List[float] = field(default_factory=lambda: [0.8, 1.0, 1.2])
    latent_regression: bool = True
    lambda_true: List[float] = field(default_factory=lambda: [0.5, 0.5, -0.5])
    sigma: float = 1.0

    # Count design
    n_sites: int = 30
    n_years: int = 10
    mu: float = 1.5
    sd_site: float = 0.8
    sd_year: float = 0.3
    missing_rate: float = 0.2

    # Sampler
    chains: int = 4
    parallel_chains: int = 4
    iter_warmup: int = 500
    iter_sampling: int = 500
    n_iterations: int = 1

    # Diagnostics / recovery
    rhat_threshold: float = 1.1
    interval: float = 0.95

    # Real-data example
    data_file: Optional[str] = None
    item_columns: List[str] = field(default_factory=list)
    covariate_columns: List[str] = field(default_factory=list)
    person_sample_size: Optional[int] = 500
    site_column: str = "site"
    year_column: str = "year"
    count_column: str = "count"
    recode_missing_categories: bool = False

    # Paths
    models_dir: Optional[str] = None
    results_dir: Optional[str] = None

    def __post_init__(self):
        """Set defaults that depend on module location and validate."""
        if self.models_dir is None:
            self.models_dir = str(DEFAULT_MODELS_DIR)
        if self.results_dir is None:
            self.results_dir = str(_MODULE_DIR.parent / "results" / self.case_study)

        self.validate()

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def model_path(self) -> Path:
        """Path to the Stan program for this case study."""
        return Path(self.models_dir) / MODEL_FILES[self.case_study]

    @property
    def is_irt(self) -> bool:
        return self.case_study in IRT_MODELS

    @property
    def is_polytomous(self) -> bool:
        return self.case_study in POLYTOMOUS_MODELS

    @property
    def estimates_sigma(self) -> bool:
        """Rasch and PCM estimate the ability SD; 2PL and GPCM fix it at 1."""
        return self.case_study in ("rasch", "pcm")

    @property
    def has_discrimination(self) -> bool:
        return self.case_study in ("2pl", "gpcm")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List of warning strings (empty if no warnings).

        Raises:
            ConfigError: On hard validation failures.
        """
        warnings: List[str] = []

        # Hard constraints
        if self.case_study not in MODEL_FILES:
            raise ConfigError(
                f"Unknown case_study: {self.case_study} "
                f"(expected one of {', '.join(MODEL_FILES)})"
            )
        if self.n_items < 2:
            raise ConfigError("n_items must be ≥ 2")
        if self.n_persons < 1:
            raise ConfigError("n_persons must be ≥ 1")
        if self.n_steps < 1:
            raise ConfigError("n_steps must be ≥ 1")
        if len(self.difficulty_range) != 2:
            raise ConfigError("difficulty_range must be [low, high]")
        if self.difficulty_range[0] > self.difficulty_range[1]:
            raise ConfigError("difficulty_range low must be ≤ high")
        if not self.discriminations or any(a <= 0 for a in self.discriminations):
            raise ConfigError("discriminations must be a non-empty list of positive values")
        if not self.lambda_true:
            raise ConfigError("lambda_true must hold at least the intercept")
        if self.sigma <= 0:
            raise ConfigError("sigma must be > 0")
        if self.n_sites < 1 or self.n_years < 1:
            raise ConfigError("n_sites and n_years must be ≥ 1")
        if self.sd_site < 0 or self.sd_year < 0:
            raise ConfigError("sd_site and sd_year must be ≥ 0")
        if not 0.0 <= self.missing_rate < 1.0:
            raise ConfigError("missing_rate must be in [0, 1)")
        if self.chains < 1:
            raise ConfigError("chains must be ≥ 1")
        if self.parallel_chains < 1:
            raise ConfigError("parallel_chains must be ≥ 1")
        if self.iter_warmup < 0 or self.iter_sampling < 1:
            raise ConfigError("iter_warmup must be ≥ 0 and iter_sampling ≥ 1")
        if self.n_iterations < 1:
            raise ConfigError("n_iterations must be ≥ 1")
        if self.rhat_threshold <= 1.0:
            raise ConfigError("rhat_threshold must be > 1.0")
        if not 0.0 < self.interval < 1.0:
            raise ConfigError("interval must be in (0, 1)")
        if self.person_sample_size is not None and self.person_sample_size < 1:
            raise ConfigError("person_sample_size must be ≥ 1 or null")

        # Soft warnings
        if self.chains < 2:
            warnings.append("chains=1: R-hat cannot compare between-chain variance")
        if self.iter_sampling < 100:
            warnings.append(
                f"iter_sampling={self.iter_sampling} is low; "
                "posterior intervals will be noisy"
            )
        if self.rhat_threshold > 1.1:
            warnings.append(
                f"rhat_threshold={self.rhat_threshold} is lenient; 1.1 is the usual cut-off"
            )
        if self.is_irt and self.latent_regression and len(self.lambda_true) < 2:
            warnings.append("latent_regression with only an intercept has no covariates")
        if self.data_file and self.is_irt and not self.item_columns:
            warnings.append("data_file given without item_columns; all non-covariate columns are items")

        for w in warnings:
            logger.warning(w)

        return warnings

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain dict (for JSON serialization)."""
        return asdict(self)

    def sampler_kwargs(self) -> Dict[str, Any]:
        """Run controls handed to ``CmdStanModel.sample``."""
        return {
            "chains": self.chains,
            "parallel_chains": self.parallel_chains,
            "iter_warmup": self.iter_warmup,
            "iter_sampling": self.iter_sampling,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CaseStudyConfig":
        """Create from a dict, ignoring unknown keys."""
        known_fields = {f.name for f in cls.__dataclass_fields__.values()}
        unknown = sorted(set(d) - known_fields)
        if unknown:
            logger.debug("Ignoring unknown config keys: %s", ", ".join(unknown))
        filtered = {k: v for k, v in d.items() if k in known_fields}
        return cls(**filtered)

    @classmethod
    def from_yaml(
        cls, path: Optional[str | Path] = None, case_study: str = "rasch"
    ) -> "CaseStudyConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML file.  Falls back to the default
                  ``configs/<case_study>.yaml`` shipped with the module.
            case_study: Used to pick the shipped default when *path* is None.

        Returns:
            Validated CaseStudyConfig instance.
        """
        path = Path(path) if path else DEFAULT_CONFIG_DIR / f"{case_study}.yaml"
        if not path.exists():
            logger.warning(
                "Config file %s not found; using defaults", path
            )
            return cls(case_study=case_study)

        with open(path) as f:
            raw = yaml.safe_load(f) or {}

        logger.info("Loaded config from %s", path)
        return cls.from_dict(raw)

    def save_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        logger.info("Saved config to %s", path)
