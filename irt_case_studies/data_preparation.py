"""
Data Preparation for the case studies.

Handles:
1. Reshaping a persons × items response matrix into the long (ii, jj, y)
   layout the IRT Stan programs expect
2. Partitioning a years × sites count grid into observed and missing cells
3. Schema checks on assembled payloads before they reach the sampler
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import numpy as np

from .identification import PayloadError, check_categories

logger = logging.getLogger(__name__)

IRT_KEYS = ("I", "J", "N", "ii", "jj", "y", "K", "W")
COUNT_KEYS = (
    "n_site", "n_year", "n_obs", "n_mis",
    "site_obs", "year_obs", "count_obs", "site_mis", "year_mis",
)


# ──────────────────────────────────────────────────────────────────────
# Item response payloads
# ──────────────────────────────────────────────────────────────────────

def add_intercept(X: np.ndarray | None, n_rows: int) -> np.ndarray:
    """Prepend a column of ones to *X* (or return the intercept alone)."""
    ones = np.ones((n_rows, 1))
    if X is None:
        return ones
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    if X.shape[0] != n_rows:
        raise PayloadError(f"Covariate matrix has {X.shape[0]} rows, expected {n_rows}")
    return np.hstack([ones, X])


def wide_to_long(responses: np.ndarray) -> Dict[str, np.ndarray]:
    """
    Stack a ``J x I`` response matrix into long form.

    Returns:
        Dict with 1-based ``ii`` and ``jj`` and integer ``y``, ordered
        person by person.

    Raises:
        PayloadError: If the matrix has missing entries.
    """
    responses = np.asarray(responses, dtype=float)
    if responses.ndim != 2:
        raise PayloadError("Responses must be a persons × items matrix")
    if np.isnan(responses).any():
        raise PayloadError(
            f"{int(np.isnan(responses).sum())} missing responses; "
            "the IRT models assume complete data"
        )
    J, I = responses.shape
    jj, ii = np.meshgrid(np.arange(1, J + 1), np.arange(1, I + 1), indexing="ij")
    return {
        "ii": ii.ravel(),
        "jj": jj.ravel(),
        "y": responses.ravel().astype(int),
    }


class StanDataBuilder:
    """
    Build Stan data dicts for the item response and count models.

    IRT payload: ``{I, J, N, ii, jj, y, K, W}`` matching the data block of
    the Rasch, 2PL, PCM and GPCM programs.

    - **I**: number of items
    - **J**: number of persons
    - **N**: number of responses
    - **ii[N]**, **jj[N]**: 1-based item and person per response
    - **y[N]**: score per response
    - **K**: number of person covariates, intercept included
    - **W[J, K]**: person covariate matrix

    Count payload: observed and missing (year, site) cells as index arrays.
    """

    def __init__(self, polytomous: bool = False):
        self.polytomous = polytomous

    def build_irt(
        self, responses: np.ndarray, W: np.ndarray
    ) -> Dict[str, Any]:
        """
        Assemble the IRT payload.

        Args:
            responses: ``J x I`` matrix of scores.
            W: ``J x K`` covariate matrix including the intercept column.

        Raises:
            PayloadError: On shape or range problems.
            MissingCategoryError: If a polytomous item skips a category.
        """
        long = wide_to_long(responses)
        J, I = np.asarray(responses).shape
        W = np.asarray(W, dtype=float)
        if W.ndim != 2 or W.shape[0] != J:
            raise PayloadError(f"W must have {J} rows, got shape {W.shape}")

        stan_data = {
            "I": int(I),
            "J": int(J),
            "N": int(long["y"].size),
            "ii": long["ii"],
            "jj": long["jj"],
            "y": long["y"],
            "K": int(W.shape[1]),
            "W": W,
        }
        self.validate_irt(stan_data)
        logger.info(
            "Stan data: I=%d, J=%d, N=%d, K=%d",
            stan_data["I"],
            stan_data["J"],
            stan_data["N"],
            stan_data["K"],
        )
        return stan_data

    def validate_irt(self, stan_data: Dict[str, Any]) -> np.ndarray | None:
        """
        Check an IRT payload against the data block.

        Returns:
            Steps per item for polytomous payloads, otherwise None.

        Raises:
            PayloadError: If a check fails.
        """
        missing = [k for k in IRT_KEYS if k not in stan_data]
        if missing:
            raise PayloadError(f"Payload lacks {missing}")

        I, J, N, K = (int(stan_data[k]) for k in ("I", "J", "N", "K"))
        ii = np.asarray(stan_data["ii"], dtype=int)
        jj = np.asarray(stan_data["jj"], dtype=int)
        y = np.asarray(stan_data["y"], dtype=int)
        W = np.asarray(stan_data["W"], dtype=float)

        issues: List[str] = []
        if not (len(ii) == len(jj) == len(y) == N):
            issues.append(f"ii, jj and y must all have length N={N}")
        if ii.size and (ii.min() < 1 or ii.max() > I):
            issues.append(f"ii outside 1..{I}")
        if jj.size and (jj.min() < 1 or jj.max() > J):
            issues.append(f"jj outside 1..{J}")
        if W.shape != (J, K):
            issues.append(f"W has shape {W.shape}, expected ({J}, {K})")
        if y.size and y.min() < 0:
            issues.append("y has negative scores")
        if not self.polytomous and y.size and y.max() > 1:
            issues.append("y must be 0/1 for dichotomous models")
        if issues:
            raise PayloadError("; ".join(issues))

        if self.polytomous:
            return check_categories(y, ii, I)
        return None

    def build_counts(self, counts: np.ndarray) -> Dict[str, Any]:
        """
        Assemble the GLMM payload from a ``n_year x n_site`` grid.

        NaN cells are missing; their (year, site) pairs go to ``*_mis``.
        """
        counts = np.asarray(counts, dtype=float)
        if counts.ndim != 2:
            raise PayloadError("Counts must be a years × sites grid")
        n_year, n_site = counts.shape
        observed = ~np.isnan(counts)
        if not observed.any():
            raise PayloadError("Count grid has no observed cells")
        if (counts[observed] < 0).any():
            raise PayloadError("Counts must be non-negative")
        if not np.allclose(counts[observed], np.round(counts[observed])):
            raise PayloadError("Counts must be integers")

        year_obs, site_obs = np.nonzero(observed)
        year_mis, site_mis = np.nonzero(~observed)
        stan_data = {
            "n_site": int(n_site),
            "n_year": int(n_year),
            "n_obs": int(year_obs.size),
            "n_mis": int(year_mis.size),
            "site_obs": site_obs + 1,
            "year_obs": year_obs + 1,
            "count_obs": counts[observed].astype(int),
            "site_mis": site_mis + 1,
            "year_mis": year_mis + 1,
        }
        self.validate_counts(stan_data)
        logger.info(
            "Stan data: %d sites x %d years, %d observed, %d missing",
            n_site,
            n_year,
            stan_data["n_obs"],
            stan_data["n_mis"],
        )
        return stan_data

    @staticmethod
    def validate_counts(stan_data: Dict[str, Any]) -> None:
        """Check a GLMM payload against the data block."""
        missing = [k for k in COUNT_KEYS if k not in stan_data]
        if missing:
            raise PayloadError(f"Payload lacks {missing}")

        n_site, n_year = int(stan_data["n_site"]), int(stan_data["n_year"])
        issues: List[str] = []
        for part in ("obs", "mis"):
            n = int(stan_data[f"n_{part}"])
            site = np.asarray(stan_data[f"site_{part}"], dtype=int)
            year = np.asarray(stan_data[f"year_{part}"], dtype=int)
            if len(site) != n or len(year) != n:
                issues.append(f"site_{part}/year_{part} must have length n_{part}={n}")
            if site.size and (site.min() < 1 or site.max() > n_site):
                issues.append(f"site_{part} outside 1..{n_site}")
            if year.size and (year.min() < 1 or year.max() > n_year):
                issues.append(f"year_{part} outside 1..{n_year}")
        if len(stan_data["count_obs"]) != int(stan_data["n_obs"]):
            issues.append("count_obs must have length n_obs")
        cells = set(zip(stan_data["year_obs"], stan_data["site_obs"]))
        if cells & set(zip(stan_data["year_mis"], stan_data["site_mis"])):
            issues.append("A (year, site) cell is both observed and missing")
        if issues:
            raise PayloadError("; ".join(issues))


# ──────────────────────────────────────────────────────────────────────
# Saving helpers
# ──────────────────────────────────────────────────────────────────────

def save_stan_data(
    stan_data: Dict[str, Any],
    filepath: str | Path,
) -> Path:
    """Save Stan data dict to JSON."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    serializable = make_serializable(stan_data)
    with open(filepath, "w") as f:
        json.dump(serializable, f, indent=2)
    logger.info("Saved Stan data to %s", filepath)
    return filepath


def make_serializable(obj: Any) -> Any:
    """Recursively convert numpy types to Python builtins for JSON."""
    if isinstance(obj, dict):
        return {k: make_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [make_serializable(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj
