"""
Morphological disparity: Procrustes variance per group.

The Procrustes variance of a group is the mean squared distance of its
members from the group mean, i.e. the trace of the group covariance matrix
with an n divisor. Pairwise differences in variance are tested by shuffling
group labels across specimens.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from wingmorph.errors import DimensionMismatchError, InsufficientDataError
from wingmorph.gpa import ShapeData, as_matrix
from wingmorph.grouping import group_codes, group_indices
from wingmorph.permutation import (
    PermutationTestResult,
    permutation_test,
    permute_rows,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DISTANCES = ("euclidean", "mahalanobis")


@dataclass(frozen=True, eq=False)
class DisparityResult:
    """Result of a morphological disparity analysis.

    Attributes:
        variances: Procrustes variance per group
        differences: Absolute pairwise variance differences, group x group
        p_values: Permutation p-values of the differences, group x group
        tests: Permutation test per unordered group pair
        distance: Distance used for squared deviations
    """

    variances: pd.Series
    differences: pd.DataFrame
    p_values: pd.DataFrame
    tests: dict[tuple[str, str], PermutationTestResult]
    distance: str


def procrustes_variance(
    data: NDArray[np.floating],
    codes: NDArray[np.intp],
    n_groups: int,
    metric: NDArray[np.floating] | None = None,
) -> NDArray[np.floating]:
    """Mean squared distance from the group mean, for every group.

    Args:
        data: Observations, shape (n_specimens, p)
        codes: Group code per specimen, in 0..n_groups-1
        n_groups: Number of groups
        metric: Optional (p, p) matrix; squared distances become d' M d
    """
    variances = np.zeros(n_groups)
    for g in range(n_groups):
        members = data[codes == g]
        deviations = members - members.mean(axis=0)
        if metric is None:
            squared = np.sum(deviations**2, axis=1)
        else:
            squared = np.einsum("ij,jk,ik->i", deviations, metric, deviations)
        variances[g] = squared.mean()
    return variances


def morphological_disparity(
    values: ShapeData,
    groups: Sequence[object],
    permutations: int = 999,
    seed: int | None = None,
    distance: str = "euclidean",
    workers: int = 1,
) -> DisparityResult:
    """Compare within-group shape (or size) variance across groups.

    Args:
        values: GPAResult, aligned (n_landmarks, n_dims, n_specimens) array,
            centroid sizes (n_specimens,) or a (n_specimens, p) matrix
        groups: Group label per specimen (e.g. sampling site)
        permutations: Number of label shuffles per pairwise test
        seed: Root seed; shared by all pairs, so every pair sees the same
            label shuffles
        distance: "euclidean", or "mahalanobis" to scale deviations by the
            pseudo-inverse of the pooled covariance of all specimens
        workers: Number of threads trials are spread across

    Returns:
        DisparityResult with per-group variances and pairwise tests

    Raises:
        DimensionMismatchError: If groups and values differ in length
        InsufficientDataError: If any group has fewer than 2 members
    """
    if distance not in DISTANCES:
        raise ValueError(f"distance must be one of {DISTANCES}, got {distance!r}")
    data = as_matrix(values)
    n = data.shape[0]
    if len(groups) != n:
        raise DimensionMismatchError(
            f"Got {len(groups)} group labels for {n} specimens"
        )

    index = group_indices(groups)
    for name, members in index.items():
        if len(members) < 2:
            raise InsufficientDataError(
                f"Group {name!r} has {len(members)} member(s); at least 2 are needed"
            )
    names = list(index)
    codes = group_codes(index, n)
    metric = None
    if distance == "mahalanobis":
        metric = np.linalg.pinv(np.atleast_2d(np.cov(data, rowvar=False)))

    observed = procrustes_variance(data, codes, len(names), metric)
    if seed is None:
        seed = int(np.random.SeedSequence().generate_state(1)[0])

    differences = pd.DataFrame(0.0, index=names, columns=names)
    p_values = pd.DataFrame(1.0, index=names, columns=names)
    tests = {}
    for a, b in itertools.combinations(range(len(names)), 2):

        def statistic(shuffled, a=a, b=b):
            variances = procrustes_variance(data, shuffled, len(names), metric)
            return abs(variances[a] - variances[b])

        test = permutation_test(
            statistic,
            permute_rows,
            codes,
            permutations=permutations,
            seed=seed,
            alternative="greater",
            workers=workers,
        )
        pair = (names[a], names[b])
        tests[pair] = test
        for row, col in (pair, pair[::-1]):
            differences.loc[row, col] = test.statistic
            p_values.loc[row, col] = test.p_value

    logger.info(
        "Disparity across %d groups (%s distance): %s",
        len(names),
        distance,
        ", ".join(f"{name}={v:.5g}" for name, v in zip(names, observed)),
    )
    return DisparityResult(
        variances=pd.Series(observed, index=names, name="procrustes_variance"),
        differences=differences,
        p_values=p_values,
        tests=tests,
        distance=distance,
    )
