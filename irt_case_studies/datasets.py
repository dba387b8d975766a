"""
Loading real datasets for the example runs.

Datasets are plain tables.  Columns are matched by name from the config;
persons (rows) are subset by a fixed, seeded sample of row indices so a
rerun with the same seed fits the same subset.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .data_preparation import add_intercept
from .identification import PayloadError

logger = logging.getLogger(__name__)


def read_table(path: str | Path) -> pd.DataFrame:
    """Read a CSV / TSV / Parquet / JSON table by file extension."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix in (".tsv", ".txt"):
        return pd.read_csv(path, sep="\t")
    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix == ".json":
        return pd.read_json(path)
    raise ValueError(f"Unsupported dataset format: {suffix}")


def sample_rows(
    frame: pd.DataFrame, n: Optional[int], seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Keep a seeded random subset of *n* rows, in their original order.

    ``n=None`` or ``n >= len(frame)`` keeps every row.
    """
    if n is None or n >= len(frame):
        return frame
    rng = np.random.default_rng(seed)
    keep = np.sort(rng.choice(len(frame), size=n, replace=False))
    return frame.iloc[keep]


def _require_columns(frame: pd.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise PayloadError(
            f"Dataset lacks columns {missing}; available: {list(frame.columns)}"
        )


@dataclass
class ItemResponseData:
    """Responses and covariates ready for ``StanDataBuilder.build_irt``."""

    responses: np.ndarray
    W: np.ndarray
    item_labels: List[str] = field(default_factory=list)
    covariate_labels: List[str] = field(default_factory=list)
    n_dropped: int = 0


def load_item_responses(
    path: str | Path,
    item_columns: Sequence[str] = (),
    covariate_columns: Sequence[str] = (),
    sample_size: Optional[int] = None,
    seed: Optional[int] = None,
) -> ItemResponseData:
    """
    Load a persons × items table.

    Args:
        path: Table file.
        item_columns: Response columns; empty means every column that is not
            a covariate.
        covariate_columns: Person covariates.  Non-numeric covariates are
            dummy coded (first level dropped).  The intercept is added here.
        sample_size: Number of persons to sample (None = all).
        seed: Seed for the row sample.

    Rows with a missing value in any used column are dropped before
    sampling, since the item response models take complete data.
    """
    frame = read_table(path)
    covariate_columns = list(covariate_columns)
    item_columns = list(item_columns) or [
        c for c in frame.columns if c not in covariate_columns
    ]
    _require_columns(frame, item_columns + covariate_columns)

    used = frame[item_columns + covariate_columns]
    complete = used.dropna()
    n_dropped = len(used) - len(complete)
    if n_dropped:
        logger.warning("Dropped %d incomplete rows from %s", n_dropped, Path(path).name)

    subset = sample_rows(complete, sample_size, seed)
    scores = subset[item_columns].to_numpy(dtype=float)
    if not np.allclose(scores, np.round(scores)):
        raise PayloadError("Item responses must be integer scores")

    covariates = None
    covariate_labels: List[str] = []
    if covariate_columns:
        design = pd.get_dummies(subset[covariate_columns], drop_first=True, dtype=float)
        covariates = design.to_numpy(dtype=float)
        covariate_labels = list(design.columns)

    W = add_intercept(covariates, len(subset))
    logger.info(
        "Loaded %d persons x %d items (%d covariates) from %s",
        len(subset),
        len(item_columns),
        len(covariate_labels),
        Path(path).name,
    )
    return ItemResponseData(
        responses=scores.astype(int),
        W=W,
        item_labels=item_columns,
        covariate_labels=["(Intercept)"] + covariate_labels,
        n_dropped=n_dropped,
    )


@dataclass
class CountData:
    """A ``n_year x n_site`` count grid (NaN = missing) with its labels."""

    counts: np.ndarray
    site_labels: List[str] = field(default_factory=list)
    year_labels: List[str] = field(default_factory=list)


def load_counts(
    path: str | Path,
    site_column: str = "site",
    year_column: str = "year",
    count_column: str = "count",
) -> CountData:
    """
    Load long-form counts (one row per site and year) into a grid.

    Blank counts and (year, site) pairs absent from the table are missing.

    Raises:
        PayloadError: If a (year, site) pair appears more than once.
    """
    frame = read_table(path)
    _require_columns(frame, [site_column, year_column, count_column])
    if frame.duplicated([year_column, site_column]).any():
        raise PayloadError("Each (year, site) pair may appear only once")

    grid = frame.pivot(index=year_column, columns=site_column, values=count_column)
    grid = grid.sort_index().sort_index(axis=1)
    logger.info(
        "Loaded %d sites x %d years from %s (%d cells missing)",
        grid.shape[1],
        grid.shape[0],
        Path(path).name,
        int(grid.isna().sum().sum()),
    )
    return CountData(
        counts=grid.to_numpy(dtype=float),
        site_labels=[str(s) for s in grid.columns],
        year_labels=[str(y) for y in grid.index],
    )
