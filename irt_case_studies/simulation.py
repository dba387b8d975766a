"""
Response and count simulators.

Each probability function reproduces the formula of the matching Stan
program so that parameter recovery compares like with like:

- Rasch:  ``logit P(y=1) = theta - beta``
- 2PL:    ``logit P(y=1) = alpha * theta + W·lambda - beta``
- PCM:    ``P(y=k) = softmax(cumsum([0, theta - beta_1, ..., theta - beta_m]))[k]``
- GPCM:   as PCM with terms ``alpha * theta + W·lambda - beta_s``
- GLMM:   ``log E[C] = mu + site_effect + year_effect``

For Rasch and PCM the regression mean is part of ``theta``.  For 2PL and
GPCM ``theta`` is standard normal and the regression mean ``W·lambda`` is a
separate term that the discrimination does not scale.

All draws go through a caller-supplied ``numpy.random.Generator`` so the
same seed always reproduces the same data.
"""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from scipy.special import expit, softmax


# ──────────────────────────────────────────────────────────────────────
# Probability formulas
# ──────────────────────────────────────────────────────────────────────

def dichotomous_probability(
    theta: np.ndarray,
    beta: np.ndarray,
    alpha: Optional[np.ndarray] = None,
    regression_mean: np.ndarray | float = 0.0,
) -> np.ndarray:
    """
    Probability of a correct response.

    Args:
        theta: Abilities, one per response.
        beta: Difficulties, one per response.
        alpha: Discriminations, one per response (None for Rasch).
        regression_mean: ``W·lambda`` per response, added unscaled (2PL).
    """
    theta = np.asarray(theta, dtype=float)
    if alpha is not None:
        theta = np.asarray(alpha, dtype=float) * theta
    eta = theta + np.asarray(regression_mean, dtype=float) - np.asarray(beta, dtype=float)
    return expit(eta)


def partial_credit_probabilities(
    theta: np.ndarray,
    steps: Sequence[float],
    alpha: float = 1.0,
    regression_mean: np.ndarray | float = 0.0,
) -> np.ndarray:
    """
    Category probabilities for one item under the (generalized) partial
    credit model.

    Args:
        theta: Abilities, shape ``(n,)``.
        steps: The item's step difficulties, length ``m``.
        alpha: The item's discrimination (1.0 for PCM).
        regression_mean: ``W·lambda`` per person, added unscaled (GPCM).

    Returns:
        Array of shape ``(n, m + 1)``; row ``r`` holds the probabilities of
        scores ``0..m`` and sums to one.
    """
    theta = np.atleast_1d(np.asarray(theta, dtype=float))
    regression_mean = np.broadcast_to(
        np.asarray(regression_mean, dtype=float), theta.shape
    )
    steps = np.asarray(steps, dtype=float)
    location = alpha * theta + regression_mean
    unsummed = np.column_stack(
        [np.zeros_like(theta), location[:, None] - steps[None, :]]
    )
    return softmax(np.cumsum(unsummed, axis=1), axis=1)


def log_rate(
    mu: float, site_effect: np.ndarray, year_effect: np.ndarray
) -> np.ndarray:
    """Log expected counts on the ``(n_year, n_site)`` grid."""
    site_effect = np.asarray(site_effect, dtype=float)
    year_effect = np.asarray(year_effect, dtype=float)
    return mu + year_effect[:, None] + site_effect[None, :]


# ──────────────────────────────────────────────────────────────────────
# Draws
# ──────────────────────────────────────────────────────────────────────

def simulate_abilities(
    W: np.ndarray,
    lambda_: Sequence[float],
    sigma: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Latent regression: ``theta = W @ lambda + sigma * e``, ``e ~ N(0, 1)``."""
    W = np.asarray(W, dtype=float)
    mean = W @ np.asarray(lambda_, dtype=float)
    return mean + sigma * rng.standard_normal(W.shape[0])


def draw_categories(probs: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """One categorical draw per row of *probs* (scores start at 0)."""
    cdf = np.cumsum(probs, axis=1)
    u = rng.random(probs.shape[0])
    # Guard against cdf[-1] landing a hair under 1.0
    return np.minimum((u[:, None] > cdf).sum(axis=1), probs.shape[1] - 1)


def simulate_dichotomous(
    theta: np.ndarray,
    beta: np.ndarray,
    ii: np.ndarray,
    jj: np.ndarray,
    rng: np.random.Generator,
    alpha: Optional[np.ndarray] = None,
    regression_mean: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Simulate 0/1 responses for Rasch (``alpha=None``) or 2PL.

    Args:
        theta: Person abilities, length ``J``.
        beta: Item difficulties, length ``I``.
        ii, jj: 1-based item and person index per response.
        rng: Random generator.
        alpha: Item discriminations, length ``I``.
        regression_mean: ``W·lambda`` per person, length ``J`` (2PL).
    """
    ii = np.asarray(ii, dtype=int) - 1
    jj = np.asarray(jj, dtype=int) - 1
    a = None if alpha is None else np.asarray(alpha)[ii]
    mean = 0.0 if regression_mean is None else np.asarray(regression_mean, dtype=float)[jj]
    p = dichotomous_probability(np.asarray(theta)[jj], np.asarray(beta)[ii], a, mean)
    return (rng.random(p.shape[0]) < p).astype(int)


def simulate_partial_credit(
    theta: np.ndarray,
    item_steps: Sequence[Sequence[float]],
    ii: np.ndarray,
    jj: np.ndarray,
    rng: np.random.Generator,
    alpha: Optional[np.ndarray] = None,
    regression_mean: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Simulate ordinal scores for PCM (``alpha=None``) or GPCM.

    Args:
        theta: Person abilities, length ``J``.
        item_steps: Step difficulties per item.
        ii, jj: 1-based item and person index per response.
        rng: Random generator.
        alpha: Item discriminations, length ``I``.
        regression_mean: ``W·lambda`` per person, length ``J`` (GPCM).

    Returns:
        Scores in ``0..len(item_steps[i])`` for each response.
    """
    ii = np.asarray(ii, dtype=int)
    jj = np.asarray(jj, dtype=int)
    theta = np.asarray(theta, dtype=float)
    mean = np.zeros_like(theta) if regression_mean is None else np.asarray(regression_mean, dtype=float)
    y = np.zeros(ii.shape[0], dtype=int)
    for i, steps in enumerate(item_steps, start=1):
        rows = np.flatnonzero(ii == i)
        if rows.size == 0:
            continue
        a = 1.0 if alpha is None else float(alpha[i - 1])
        persons = jj[rows] - 1
        probs = partial_credit_probabilities(theta[persons], steps, a, mean[persons])
        y[rows] = draw_categories(probs, rng)
    return y


def simulate_counts(
    mu: float,
    site_effect: np.ndarray,
    year_effect: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """Poisson counts on the ``(n_year, n_site)`` grid."""
    return rng.poisson(np.exp(log_rate(mu, site_effect, year_effect)))
