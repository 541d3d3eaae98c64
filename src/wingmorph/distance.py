"""
Labeled distance matrices.

Builds symmetric distance matrices from aligned shapes, geographic
coordinates or numeric covariates, wraps externally computed matrices
(e.g. genetic distances), and restricts pairs of matrices to a shared,
consistently ordered set of entities.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform

from wingmorph.errors import (
    DimensionMismatchError,
    LabelMismatchError,
    MissingDataError,
)
from wingmorph.gpa import GPAResult, flatten

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088
GEO_METHODS = ("euclidean", "haversine")


class DistanceMatrix:
    """Symmetric, zero-diagonal matrix indexed by entity identifiers."""

    def __init__(self, data: NDArray[np.floating], ids: Sequence[str]):
        matrix = np.array(data, dtype=float)
        ids = tuple(str(i) for i in ids)

        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise DimensionMismatchError(
                f"Distance matrix must be square, got shape {matrix.shape}"
            )
        if len(ids) != matrix.shape[0]:
            raise DimensionMismatchError(
                f"Got {len(ids)} ids for a {matrix.shape[0]}x{matrix.shape[0]} matrix"
            )
        if len(set(ids)) != len(ids):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            raise LabelMismatchError(f"Duplicate ids in distance matrix: {duplicates}")
        if not np.all(np.isfinite(matrix)):
            raise MissingDataError("Distance matrix contains missing values")
        if not np.allclose(matrix, matrix.T, atol=1e-8):
            raise ValueError("Distance matrix is not symmetric")
        if not np.allclose(np.diag(matrix), 0.0, atol=1e-8):
            raise ValueError("Distance matrix has a non-zero diagonal")

        matrix = (matrix + matrix.T) / 2
        np.fill_diagonal(matrix, 0.0)
        matrix.flags.writeable = False
        self._data = matrix
        self._ids = ids

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> DistanceMatrix:
        """Build from a square DataFrame whose index and columns are ids."""
        index = [str(i) for i in frame.index]
        columns = [str(c) for c in frame.columns]
        if index != columns:
            raise LabelMismatchError(
                "Row and column labels of the distance table differ"
            )
        return cls(frame.to_numpy(dtype=float), index)

    @property
    def data(self) -> NDArray[np.floating]:
        return self._data

    @property
    def ids(self) -> tuple[str, ...]:
        return self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"DistanceMatrix(n={len(self)})"

    def condensed(self) -> NDArray[np.floating]:
        """Upper triangle without the diagonal, row by row."""
        return squareform(self._data, checks=False)

    def subset(self, ids: Iterable[str]) -> DistanceMatrix:
        """Restrict to the given ids, in the order given."""
        position = {label: i for i, label in enumerate(self._ids)}
        wanted = [str(i) for i in ids]
        unknown = [i for i in wanted if i not in position]
        if unknown:
            raise LabelMismatchError(f"Ids not in distance matrix: {unknown}")
        index = [position[i] for i in wanted]
        return DistanceMatrix(self._data[np.ix_(index, index)], wanted)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._data, index=list(self._ids), columns=list(self._ids))


def shape_distance(result: GPAResult) -> DistanceMatrix:
    """Pairwise Euclidean distances between flattened aligned shapes."""
    flat = flatten(result.aligned)
    return DistanceMatrix(squareform(pdist(flat, metric="euclidean")), result.ids)


def covariate_distance(
    values: NDArray[np.floating] | Sequence[float],
    ids: Sequence[str],
) -> DistanceMatrix:
    """Euclidean distances between per-entity numeric values.

    Args:
        values: Shape (n,) for one covariate or (n, p) for several
        ids: Entity identifiers, one per row
    """
    array = np.asarray(values, dtype=float)
    if array.ndim == 1:
        array = array[:, np.newaxis]
    if array.ndim != 2:
        raise DimensionMismatchError(
            f"Covariates must be 1-D or 2-D, got shape {array.shape}"
        )
    if array.shape[0] != len(ids):
        raise DimensionMismatchError(
            f"Got {len(ids)} ids for {array.shape[0]} covariate rows"
        )
    if not np.all(np.isfinite(array)):
        raise MissingDataError("Covariate values contain missing entries")
    return DistanceMatrix(squareform(pdist(array, metric="euclidean")), ids)


def geo_distance(
    latitudes: Sequence[float],
    longitudes: Sequence[float],
    ids: Sequence[str],
    method: str = "euclidean",
) -> DistanceMatrix:
    """Distances between sampling locations.

    Args:
        latitudes: Latitude in decimal degrees, one per entity
        longitudes: Longitude in decimal degrees, one per entity
        ids: Entity identifiers
        method: "euclidean" on (longitude, latitude) degrees, or
            "haversine" for great-circle distance in kilometres
    """
    if method not in GEO_METHODS:
        raise ValueError(f"method must be one of {GEO_METHODS}, got {method!r}")
    lat = np.asarray(latitudes, dtype=float)
    lon = np.asarray(longitudes, dtype=float)
    if lat.shape != lon.shape or lat.ndim != 1:
        raise DimensionMismatchError("latitudes and longitudes must be 1-D and equal length")
    if method == "euclidean":
        return covariate_distance(np.column_stack((lon, lat)), ids)

    if len(ids) != len(lat):
        raise DimensionMismatchError(f"Got {len(ids)} ids for {len(lat)} locations")
    if not (np.all(np.isfinite(lat)) and np.all(np.isfinite(lon))):
        raise MissingDataError("Coordinates contain missing entries")
    phi = np.radians(lat)
    lam = np.radians(lon)
    dphi = phi[:, np.newaxis] - phi[np.newaxis, :]
    dlam = lam[:, np.newaxis] - lam[np.newaxis, :]
    a = (
        np.sin(dphi / 2) ** 2
        + np.cos(phi)[:, np.newaxis] * np.cos(phi)[np.newaxis, :] * np.sin(dlam / 2) ** 2
    )
    matrix = 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))
    return DistanceMatrix(matrix, ids)


def reconcile(
    a: DistanceMatrix,
    b: DistanceMatrix,
) -> tuple[DistanceMatrix, DistanceMatrix]:
    """Restrict two matrices to their shared ids, in ``a``'s order.

    Raises:
        LabelMismatchError: If the matrices share no ids
    """
    in_b = set(b.ids)
    common = [i for i in a.ids if i in in_b]
    if not common:
        raise LabelMismatchError("Distance matrices share no identifiers")

    dropped_a = len(a) - len(common)
    dropped_b = len(b) - len(common)
    if dropped_a or dropped_b:
        logger.warning(
            "Reconciled distance matrices to %d shared ids "
            "(dropped %d from first, %d from second)",
            len(common),
            dropped_a,
            dropped_b,
        )
    return a.subset(common), b.subset(common)
