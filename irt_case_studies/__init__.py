"""
IRT and GLMM case studies

Rasch, 2PL, partial credit and generalized partial credit models with
latent regression, plus a Poisson GLMM with missing cells.  Each case study
simulates data from known parameters, fits a Stan program with cmdstanpy,
checks R-hat, evaluates recovery and refits a real dataset.
"""
import logging

# Configure module-level logging
logging.getLogger(__name__).addHandler(logging.NullHandler())

from .config import CaseStudyConfig, ConfigError, MODEL_FILES
from .identification import (
    MissingCategoryError,
    PayloadError,
    check_categories,
    recode_missing_categories,
    sum_to_zero,
)
from .study_design import CountDesign, ItemResponseDesign, design_from_config
from .data_preparation import StanDataBuilder, save_stan_data
from .model_estimation import FitResult, InferenceError, ModelEstimation
from .diagnostics import ConvergenceReport, rhat_from_draws, rhat_from_summary
from .parameter_recovery import ParameterRecovery, coverage_summary, discrepancy_table
from .examples import ExampleRunner, posterior_table
from .study_runner import CaseStudyRunner

# Sub-modules
from . import simulation
from . import datasets
from . import visualization

__all__ = [
    "CaseStudyConfig",
    "ConfigError",
    "MODEL_FILES",
    "MissingCategoryError",
    "PayloadError",
    "check_categories",
    "recode_missing_categories",
    "sum_to_zero",
    "CountDesign",
    "ItemResponseDesign",
    "design_from_config",
    "StanDataBuilder",
    "save_stan_data",
    "FitResult",
    "InferenceError",
    "ModelEstimation",
    "ConvergenceReport",
    "rhat_from_draws",
    "rhat_from_summary",
    "ParameterRecovery",
    "coverage_summary",
    "discrepancy_table",
    "ExampleRunner",
    "posterior_table",
    "CaseStudyRunner",
    "simulation",
    "datasets",
    "visualization",
]

__version__ = "0.1.0"
