"""
Procrustes ANOVA: linear models on shape (or size) with permutation tests.

Sums of squares are sums of squared Procrustes distances, computed on the
flattened aligned coordinates. Terms enter sequentially (type I sums of
squares). Each term is tested by randomizing the residuals of the model
that precedes it, keeping the design matrix fixed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from wingmorph.errors import (
    DimensionMismatchError,
    InsufficientDataError,
    MissingDataError,
)
from wingmorph.gpa import GPAResult, ShapeData, as_matrix
from wingmorph.permutation import PermutationTestResult, permutation_test

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Sums of squares below this fraction of the response's raw sum of squares
# are treated as exactly zero.
_RELATIVE_FLOOR = 1e-12


@dataclass(frozen=True, eq=False)
class AnovaTerm:
    """One row of a sequential ANOVA table."""

    name: str
    df: int
    ss: float
    ms: float
    rsq: float
    f: float
    test: PermutationTestResult

    @property
    def p_value(self) -> float:
        return self.test.p_value


@dataclass(frozen=True, eq=False)
class AnovaResult:
    """Result of a Procrustes ANOVA.

    Attributes:
        terms: Sequential tests, one per predictor, in model order
        model: Test of the whole model against the intercept-only model
        model_df: Degrees of freedom of all predictors together
        model_ss: Sum of squares explained by all predictors together
        residual_df: Residual degrees of freedom of the full model
        residual_ss: Residual sum of squares of the full model
        total_ss: Total sum of squares about the mean
    """

    terms: tuple[AnovaTerm, ...]
    model: PermutationTestResult
    model_df: int
    model_ss: float
    residual_df: int
    residual_ss: float
    total_ss: float

    def table(self) -> pd.DataFrame:
        """ANOVA summary table with Residuals and Total rows."""
        rows = [
            [t.df, t.ss, t.ms, t.rsq, t.f, t.p_value] for t in self.terms
        ]
        residual_ms = self.residual_ss / self.residual_df
        rows.append(
            [self.residual_df, self.residual_ss, residual_ms,
             _fraction(self.residual_ss, self.total_ss), np.nan, np.nan]
        )
        rows.append(
            [self.model_df + self.residual_df, self.total_ss, np.nan,
             np.nan, np.nan, np.nan]
        )
        index = [t.name for t in self.terms] + ["Residuals", "Total"]
        return pd.DataFrame(
            rows, index=index, columns=["Df", "SS", "MS", "Rsq", "F", "Pr(>F)"]
        )


def design_matrix(
    predictors: Mapping[str, Sequence[object]],
    n: int,
) -> tuple[NDArray[np.floating], list[tuple[str, slice]]]:
    """Build a model matrix with an intercept column.

    Categorical predictors (strings, booleans, other non-numeric values) are
    dummy coded with the first sorted level as baseline; numeric predictors
    enter as one column each.

    Returns:
        Model matrix, shape (n, n_columns), and the column slice of each term
    """
    columns = [np.ones((n, 1))]
    terms = []
    start = 1
    for name, values in predictors.items():
        series = pd.Series(list(values))
        if len(series) != n:
            raise DimensionMismatchError(
                f"Predictor {name!r} has {len(series)} values for {n} specimens"
            )
        if series.isna().any():
            raise MissingDataError(f"Predictor {name!r} has missing values")
        if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
            block = series.to_numpy(dtype=float)[:, np.newaxis]
        else:
            dummies = pd.get_dummies(series.astype(str), drop_first=True, dtype=float)
            if dummies.shape[1] == 0:
                raise InsufficientDataError(
                    f"Categorical predictor {name!r} has a single level"
                )
            block = dummies.to_numpy()
        columns.append(block)
        terms.append((name, slice(start, start + block.shape[1])))
        start += block.shape[1]
    return np.hstack(columns), terms


def procrustes_anova(
    response: ShapeData,
    predictors: Mapping[str, Sequence[object]],
    permutations: int = 999,
    seed: int | None = None,
    workers: int = 1,
) -> AnovaResult:
    """Fit shape (or size) on predictors and test each term by permutation.

    Args:
        response: GPAResult, aligned (n_landmarks, n_dims, n_specimens)
            array, (n_specimens,) vector or (n_specimens, p) matrix
        predictors: Ordered mapping of predictor name to per-specimen values
        permutations: Number of permutation trials per test
        seed: Root seed; every test reuses it, so all terms see the same
            row permutations
        workers: Number of threads trials are spread across

    Returns:
        AnovaResult with sequential term tests and a whole-model test

    Raises:
        DimensionMismatchError: If a predictor's length differs from n
        MissingDataError: If response or predictors contain missing values
        InsufficientDataError: If no residual degrees of freedom remain
    """
    if not predictors:
        raise ValueError("At least one predictor is required")
    y = as_matrix(response)
    n = y.shape[0]
    x, term_columns = design_matrix(predictors, n)

    # Hat matrices of the nested models: intercept, +term1, +term1+term2, ...
    hats = []
    ranks = []
    for end in [1] + [cols.stop for _, cols in term_columns]:
        sub = x[:, :end]
        hats.append(np.dot(sub, np.linalg.pinv(sub)))
        ranks.append(int(np.linalg.matrix_rank(sub)))

    residual_df = n - ranks[-1]
    if residual_df < 1:
        raise InsufficientDataError(
            f"Model with {ranks[-1]} parameters leaves no residual degrees "
            f"of freedom for {n} specimens"
        )
    floor = _RELATIVE_FLOOR * max(float(np.sum(y**2)), np.finfo(float).tiny)
    h_full = hats[-1]
    if seed is None:
        seed = int(np.random.SeedSequence().generate_state(1)[0])

    sse = [_sse(y, h) for h in hats]
    total_ss = sse[0]
    residual_ss = sse[-1]

    terms = []
    for j, (name, _) in enumerate(term_columns):
        df = ranks[j + 1] - ranks[j]
        if df == 0:
            logger.warning("Term %r is fully aliased with earlier terms", name)
        h_reduced, h_term = hats[j], hats[j + 1]
        fitted = np.dot(h_reduced, y)
        residuals = y - fitted

        def statistic(y_perm, h_reduced=h_reduced, h_term=h_term, df=df):
            return _f_ratio(y_perm, h_reduced, h_term, h_full, df, residual_df, floor)

        def permute(y_obs, rng, fitted=fitted, residuals=residuals):
            return fitted + residuals[rng.permutation(n)]

        test = permutation_test(
            statistic,
            permute,
            y,
            permutations=permutations,
            seed=seed,
            alternative="greater",
            workers=workers,
        )
        ss = max(sse[j] - sse[j + 1], 0.0)
        terms.append(
            AnovaTerm(
                name=name,
                df=df,
                ss=ss,
                ms=ss / df if df else 0.0,
                rsq=_fraction(ss, total_ss),
                f=test.statistic,
                test=test,
            )
        )

    model_df = ranks[-1] - ranks[0]

    def model_statistic(y_perm):
        return _f_ratio(y_perm, hats[0], h_full, h_full, model_df, residual_df, floor)

    def permute_rows(y_obs, rng):
        return y_obs[rng.permutation(n)]

    model = permutation_test(
        model_statistic,
        permute_rows,
        y,
        permutations=permutations,
        seed=seed,
        alternative="greater",
        workers=workers,
    )
    model_ss = max(total_ss - residual_ss, 0.0)
    logger.info(
        "Procrustes ANOVA on %d specimens: Rsq=%.4f, F=%.4f, p=%.4f",
        n,
        _fraction(model_ss, total_ss),
        model.statistic,
        model.p_value,
    )
    return AnovaResult(
        terms=tuple(terms),
        model=model,
        model_df=model_df,
        model_ss=model_ss,
        residual_df=residual_df,
        residual_ss=residual_ss,
        total_ss=total_ss,
    )


def allometry(
    result: GPAResult,
    permutations: int = 999,
    seed: int | None = None,
    workers: int = 1,
) -> AnovaResult:
    """Test shape ~ log(centroid size)."""
    return procrustes_anova(
        result,
        {"log_size": np.log(result.centroid_sizes)},
        permutations=permutations,
        seed=seed,
        workers=workers,
    )


def _sse(y: NDArray[np.floating], hat: NDArray[np.floating]) -> float:
    return float(np.sum((y - np.dot(hat, y)) ** 2))


def _f_ratio(
    y: NDArray[np.floating],
    h_reduced: NDArray[np.floating],
    h_term: NDArray[np.floating],
    h_full: NDArray[np.floating],
    df_term: int,
    df_residual: int,
    floor: float,
) -> float:
    if df_term == 0:
        return 0.0
    ss_term = _sse(y, h_reduced) - _sse(y, h_term)
    ss_residual = _sse(y, h_full)
    if ss_residual <= floor:
        return 0.0 if ss_term <= floor else float("inf")
    if ss_term <= floor:
        return 0.0
    return (ss_term / df_term) / (ss_residual / df_residual)


def _fraction(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0
