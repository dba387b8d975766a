"""
Shared test fixtures for the case study test suite.

The sampler is replaced by ``FakeEstimation``, which returns draws
centred on the generating values so the recovery, diagnostics and example
code can run without CmdStan.
"""
import pytest
import numpy as np
import pandas as pd
from pathlib import Path

from irt_case_studies.config import CaseStudyConfig
from irt_case_studies.model_estimation import FitResult


def fake_fit(
    centres,
    output_dir,
    chains=4,
    n_draws=200,
    noise=0.05,
    rhat=1.002,
    seed=0,
) -> FitResult:
    """Build a FitResult whose draws scatter tightly around *centres*."""
    rng = np.random.default_rng(seed)
    n = chains * n_draws
    columns = {"lp__": rng.normal(-100.0, 1.0, n)}
    for name, value in centres.items():
        columns[name] = value + noise * rng.standard_normal(n)
    draws = pd.DataFrame(columns)
    draws["chain__"] = np.repeat(np.arange(1, chains + 1), n_draws)
    draws["iter__"] = np.tile(np.arange(1, n_draws + 1), chains)
    draws["draw__"] = np.arange(1, n + 1)

    names = ["lp__"] + list(centres)
    summary = pd.DataFrame(
        {
            "Mean": [draws[c].mean() for c in names],
            "2.5%": [draws[c].quantile(0.025) for c in names],
            "50%": [draws[c].median() for c in names],
            "97.5%": [draws[c].quantile(0.975) for c in names],
            "R_hat": [rhat] * len(names),
        },
        index=names,
    )
    return FitResult(
        fit=None,
        summary=summary,
        draws=draws,
        output_dir=Path(output_dir),
        run_controls={"chains": chains, "iter_sampling": n_draws},
    )


class FakeEstimation:
    """
    Stands in for ModelEstimation.

    ``centres_fn(data)`` returns the parameter values the fake posterior is
    centred on; every call records the data and seed it was given.
    """

    def __init__(self, centres_fn, output_dir, rhat=1.002):
        self.centres_fn = centres_fn
        self.output_dir = Path(output_dir)
        self.rhat = rhat
        self.calls = []

    def run(self, data, output_dir=None, seed=None):
        self.calls.append({"data": data, "seed": seed})
        out = Path(output_dir) if output_dir is not None else self.output_dir
        out.mkdir(parents=True, exist_ok=True)
        return fake_fit(
            self.centres_fn(data), out, rhat=self.rhat, seed=seed or 0
        )


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def small_config(tmp_path):
    """A small Rasch config writing into tmp_path."""
    return CaseStudyConfig(
        case_study="rasch",
        n_items=6,
        n_persons=120,
        chains=2,
        iter_warmup=100,
        iter_sampling=100,
        results_dir=str(tmp_path / "results"),
    )


@pytest.fixture
def dichotomous_csv(tmp_path, rng):
    """Ten persons, four 0/1 items, an age and a group covariate."""
    n = 10
    frame = pd.DataFrame(
        {f"item{i}": rng.integers(0, 2, n) for i in range(1, 5)}
    )
    frame["age"] = rng.normal(40, 10, n).round(1)
    frame["group"] = ["a", "b"] * (n // 2)
    path = tmp_path / "responses.csv"
    frame.to_csv(path, index=False)
    return path


@pytest.fixture
def ordinal_csv(tmp_path):
    """
    Six persons, three items scored 0-2.  Item ``q3`` never uses
    category 1.
    """
    frame = pd.DataFrame(
        {
            "q1": [0, 1, 2, 1, 0, 2],
            "q2": [1, 2, 0, 0, 1, 2],
            "q3": [0, 2, 2, 0, 2, 0],
            "female": [1, 0, 1, 0, 1, 0],
        }
    )
    path = tmp_path / "ordinal.csv"
    frame.to_csv(path, index=False)
    return path


@pytest.fixture
def counts_csv(tmp_path):
    """Three sites x two years in long form, one cell blank and one absent."""
    frame = pd.DataFrame(
        {
            "site": ["A", "B", "C", "A", "B"],
            "year": [2001, 2001, 2001, 2002, 2002],
            "count": [3, np.nan, 7, 0, 5],
        }
    )
    path = tmp_path / "counts.csv"
    frame.to_csv(path, index=False)
    return path
