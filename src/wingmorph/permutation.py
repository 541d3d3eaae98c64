"""
Generic permutation test engine.

Procrustes ANOVA, morphological disparity and the Mantel test all reduce to
the same procedure: compute a statistic on the observed data, recompute it
on permuted copies, and count how often the permuted statistic is at least
as extreme. Callers supply the statistic and the permutation operator.

Every trial draws its randomness from a generator seeded by
``(seed, trial_index)``, so results do not depend on how trials are
scheduled across workers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALTERNATIVES = ("two-sided", "greater", "less")

# Tie tolerance when comparing permuted and observed statistics.
_EPS = float(np.sqrt(np.finfo(float).eps))


@dataclass(frozen=True, eq=False)
class PermutationTestResult:
    """Outcome of a permutation test.

    Attributes:
        statistic: Statistic computed on the unpermuted data
        permutations: Number of permutation trials run
        p_value: Laplace-smoothed empirical p-value
        alternative: "two-sided", "greater" or "less"
        seed: Root seed the trial generators were derived from
        null_distribution: Permuted statistics in trial order, if kept
    """

    statistic: float
    permutations: int
    p_value: float
    alternative: str
    seed: int
    null_distribution: NDArray[np.floating] | None = None


def trial_rng(seed: int, trial: int) -> np.random.Generator:
    """Random generator for one trial, determined by (seed, trial)."""
    return np.random.default_rng(np.random.SeedSequence(seed, spawn_key=(trial,)))


def permutation_test(
    statistic: Callable[[T], float],
    permute: Callable[[T, np.random.Generator], T],
    data: T,
    permutations: int = 999,
    seed: int | None = None,
    alternative: str = "two-sided",
    workers: int = 1,
    keep_null: bool = True,
) -> PermutationTestResult:
    """Run a permutation test.

    Args:
        statistic: Maps data to a real-valued test statistic
        permute: Returns a permuted copy of data using the given generator.
            Always receives the original, unpermuted data.
        data: Observed data, passed unchanged to ``statistic`` and ``permute``
        permutations: Number of permutation trials
        seed: Root seed. If None, fresh entropy is drawn and recorded on
            the result so the run can be repeated.
        alternative: "two-sided" counts |null| >= |observed|, "greater"
            counts null >= observed, "less" counts null <= observed
        workers: Number of threads trials are spread across
        keep_null: Store the permuted statistics on the result

    Returns:
        PermutationTestResult with p-value (1 + count) / (permutations + 1)
    """
    if permutations < 1:
        raise ValueError("permutations must be at least 1")
    if alternative not in ALTERNATIVES:
        raise ValueError(
            f"alternative must be one of {ALTERNATIVES}, got {alternative!r}"
        )
    if workers < 1:
        raise ValueError("workers must be at least 1")
    if seed is None:
        seed = int(np.random.SeedSequence().generate_state(1)[0])

    observed = float(statistic(data))

    def run_trials(trials: range) -> NDArray[np.floating]:
        values = np.empty(len(trials))
        for j, trial in enumerate(trials):
            values[j] = statistic(permute(data, trial_rng(seed, trial)))
        return values

    if workers == 1:
        null = run_trials(range(permutations))
    else:
        chunks = _chunk(permutations, workers)
        logger.debug(
            "Running %d permutations in %d chunks on %d threads",
            permutations,
            len(chunks),
            workers,
        )
        with ThreadPoolExecutor(max_workers=workers) as executor:
            null = np.concatenate(list(executor.map(run_trials, chunks)))

    count = _count_extreme(null, observed, alternative)
    p_value = (1 + count) / (permutations + 1)

    return PermutationTestResult(
        statistic=observed,
        permutations=permutations,
        p_value=p_value,
        alternative=alternative,
        seed=seed,
        null_distribution=null if keep_null else None,
    )


def permute_rows(data: NDArray[Any], rng: np.random.Generator) -> NDArray[Any]:
    """Permutation operator shuffling the first axis of an array."""
    return data[rng.permutation(len(data))]


def _count_extreme(
    null: NDArray[np.floating], observed: float, alternative: str
) -> int:
    if alternative == "two-sided":
        hits = np.abs(null) >= abs(observed) - _EPS
    elif alternative == "greater":
        hits = null >= observed - _EPS
    else:
        hits = null <= observed + _EPS
    return int(np.count_nonzero(hits))


def _chunk(permutations: int, workers: int) -> list[range]:
    """Split trial indices into contiguous, ordered ranges."""
    bounds = np.linspace(0, permutations, min(workers, permutations) + 1).astype(int)
    return [range(start, stop) for start, stop in zip(bounds[:-1], bounds[1:])]
