"""
Mantel test of association between two distance matrices.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy.spatial.distance import squareform
from scipy.stats import rankdata

from wingmorph.distance import DistanceMatrix
from wingmorph.errors import InsufficientDataError, LabelMismatchError
from wingmorph.permutation import PermutationTestResult, permutation_test

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

METHODS = ("pearson", "spearman")

# Centered sum of squares below this fraction of the raw sum of squares
# counts as zero variance.
_FLAT = 1e-20


def mantel(
    a: DistanceMatrix,
    b: DistanceMatrix,
    permutations: int = 999,
    seed: int | None = None,
    alternative: str = "greater",
    method: str = "pearson",
    workers: int = 1,
) -> PermutationTestResult:
    """Correlate two distance matrices and test by permuting entities.

    The statistic is the correlation between the upper triangles of ``a``
    and ``b``. Each trial applies one permutation to both rows and columns
    of ``b``, which keeps its internal structure intact.

    Args:
        a: First distance matrix
        b: Second distance matrix, with the same ids in the same order
        permutations: Number of permutation trials
        seed: Root seed for the trial generators
        alternative: "greater" (positive association), "less" or "two-sided"
        method: "pearson", or "spearman" to correlate ranks
        workers: Number of threads trials are spread across

    Returns:
        PermutationTestResult whose statistic is the Mantel r

    Raises:
        LabelMismatchError: If the matrices are not indexed identically
        InsufficientDataError: If fewer than 3 entities are shared
    """
    if a.ids != b.ids:
        raise LabelMismatchError(
            "Distance matrices must share identical ordered ids; reconcile them first"
        )
    if len(a) < 3:
        raise InsufficientDataError(
            f"Mantel test needs at least 3 entities, got {len(a)}"
        )
    if method not in METHODS:
        raise ValueError(f"method must be one of {METHODS}, got {method!r}")

    x = a.condensed()
    matrix_b = b.data
    if method == "spearman":
        x = rankdata(x)

    def statistic(order: NDArray[np.intp]) -> float:
        y = squareform(matrix_b[np.ix_(order, order)], checks=False)
        if method == "spearman":
            y = rankdata(y)
        return _correlation(x, y)

    def permute(order: NDArray[np.intp], rng: np.random.Generator) -> NDArray[np.intp]:
        return order[rng.permutation(len(order))]

    result = permutation_test(
        statistic,
        permute,
        np.arange(len(b)),
        permutations=permutations,
        seed=seed,
        alternative=alternative,
        workers=workers,
    )
    logger.info(
        "Mantel r=%.4f, p=%.4f (%d permutations, n=%d)",
        result.statistic,
        result.p_value,
        permutations,
        len(a),
    )
    return result


def _correlation(x: NDArray[np.floating], y: NDArray[np.floating]) -> float:
    """Pearson correlation; 0 when either vector has no variance."""
    xc = x - x.mean()
    yc = y - y.mean()
    sxx = np.dot(xc, xc)
    syy = np.dot(yc, yc)
    if sxx <= _FLAT * np.dot(x, x) or syy <= _FLAT * np.dot(y, y):
        return 0.0
    return float(np.dot(xc, yc) / np.sqrt(sxx * syy))
