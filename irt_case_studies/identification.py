"""
Identification and step bookkeeping for the item response models.

The Stan programs identify the difficulty scale by estimating all but one
difficulty freely and setting the last to the negated sum of the others.
For the partial credit models the same constraint is applied to the
concatenated vector of every item's step difficulties, and the number of
steps per item is read off the data (the highest observed score).  The
helpers here mirror that logic so simulated parameters and data payloads
line up with what the sampler will allocate.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """Raised when a data payload does not match a model's data schema."""
    pass


class MissingCategoryError(PayloadError):
    """Raised when an item skips a response category below its maximum."""

    def __init__(self, gaps: Dict[int, List[int]]):
        self.gaps = gaps
        detail = "; ".join(
            f"item {item}: categories {cats}" for item, cats in sorted(gaps.items())
        )
        super().__init__(
            "Response categories with no observations below the item maximum "
            f"({detail}). Recode these items before fitting."
        )


def sum_to_zero(free: Sequence[float]) -> np.ndarray:
    """Append the negated sum of *free*, giving a vector that sums to zero."""
    free = np.asarray(free, dtype=float)
    return np.append(free, -free.sum())


def free_parameters(constrained: Sequence[float]) -> np.ndarray:
    """
    Inverse of :func:`sum_to_zero`: drop the derived last element.

    Raises:
        ValueError: If *constrained* does not sum to zero.
    """
    constrained = np.asarray(constrained, dtype=float)
    if constrained.size == 0:
        raise ValueError("Cannot take free parameters of an empty vector")
    if not np.isclose(constrained.sum(), 0.0, atol=1e-8):
        raise ValueError(
            f"Vector sums to {constrained.sum():.3g}, not zero; "
            "apply center() first"
        )
    return constrained[:-1].copy()


def center(values: Sequence[float]) -> np.ndarray:
    """Shift *values* so they have mean zero."""
    values = np.asarray(values, dtype=float)
    return values - values.mean()


def steps_per_item(y: Sequence[int], ii: Sequence[int], n_items: int) -> np.ndarray:
    """
    Number of step parameters per item: the highest observed score.

    Args:
        y: Scores, one per response.
        ii: 1-based item index per response.
        n_items: Number of items ``I``.

    Returns:
        Integer array of length ``I``.
    """
    y = np.asarray(y, dtype=int)
    ii = np.asarray(ii, dtype=int)
    m = np.zeros(n_items, dtype=int)
    np.maximum.at(m, ii - 1, y)
    return m


def step_positions(m: Sequence[int]) -> np.ndarray:
    """1-based position of each item's first step in the flattened vector."""
    m = np.asarray(m, dtype=int)
    return np.concatenate([[1], 1 + np.cumsum(m[:-1])]).astype(int)


def category_counts(
    y: Sequence[int], ii: Sequence[int], n_items: int
) -> np.ndarray:
    """
    Count responses per item and category.

    Returns:
        ``I x (max score + 1)`` integer array.
    """
    y = np.asarray(y, dtype=int)
    ii = np.asarray(ii, dtype=int)
    if y.size and y.min() < 0:
        raise PayloadError("Scores must be non-negative")
    n_cat = int(y.max()) + 1 if y.size else 1
    counts = np.zeros((n_items, n_cat), dtype=int)
    np.add.at(counts, (ii - 1, y), 1)
    return counts


def find_category_gaps(
    y: Sequence[int], ii: Sequence[int], n_items: int
) -> Dict[int, List[int]]:
    """
    Categories with zero responses below each item's observed maximum.

    Returns:
        Mapping of 1-based item index to the list of unobserved categories;
        items without gaps are omitted.
    """
    counts = category_counts(y, ii, n_items)
    m = steps_per_item(y, ii, n_items)
    gaps: Dict[int, List[int]] = {}
    for i in range(n_items):
        missing = [int(k) for k in range(m[i]) if counts[i, k] == 0]
        if missing:
            gaps[i + 1] = missing
    return gaps


def check_categories(y: Sequence[int], ii: Sequence[int], n_items: int) -> np.ndarray:
    """
    Verify every item exercises each category up to its maximum.

    Returns:
        Steps per item (see :func:`steps_per_item`).

    Raises:
        MissingCategoryError: If any item skips a category.
        PayloadError: If an item has no score above zero.
    """
    gaps = find_category_gaps(y, ii, n_items)
    if gaps:
        raise MissingCategoryError(gaps)
    m = steps_per_item(y, ii, n_items)
    flat = [i + 1 for i in range(n_items) if m[i] == 0]
    if flat:
        raise PayloadError(
            f"Items {flat} have no responses above category 0; "
            "drop them before fitting"
        )
    return m


def recode_missing_categories(
    y: Sequence[int], ii: Sequence[int], n_items: int
) -> np.ndarray:
    """
    Collapse unobserved categories so each item's scores are contiguous.

    Scores above an empty category move down, e.g. an item observed only at
    0, 2 and 3 is recoded to 0, 1 and 2.  This is the manual recoding step
    the partial credit models need; it is never applied implicitly.

    Returns:
        Recoded copy of *y*.
    """
    y = np.asarray(y, dtype=int)
    ii = np.asarray(ii, dtype=int)
    recoded = y.copy()
    for item, missing in find_category_gaps(y, ii, n_items).items():
        mask = ii == item
        shift = np.zeros_like(y[mask])
        for k in missing:
            shift += y[mask] > k
        recoded[mask] = y[mask] - shift
        logger.info("Item %d: collapsed empty categories %s", item, missing)
    return recoded


def split_steps(beta: Sequence[float], m: Sequence[int]) -> List[np.ndarray]:
    """Split a flattened step vector into one array per item."""
    beta = np.asarray(beta, dtype=float)
    m = np.asarray(m, dtype=int)
    if beta.size != m.sum():
        raise ValueError(
            f"Step vector has {beta.size} elements but items need {m.sum()}"
        )
    return np.split(beta, np.cumsum(m)[:-1])
