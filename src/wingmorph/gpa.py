"""
Generalized Procrustes Analysis (GPA) functions.

This module provides functions for performing Generalized Procrustes Analysis
on 2D or 3D landmark data, including centering, scaling, and alignment
operations.

Based on Dryden and Mardia (2016) "Statistical Shape Analysis".
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

import numpy as np
import scipy.linalg as sp

from wingmorph.errors import (
    ConvergenceWarning,
    DegenerateShapeError,
    DimensionMismatchError,
    MissingDataError,
)
from wingmorph.specimens import SUPPORTED_DIMS, SpecimenSet

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Relative to the largest absolute coordinate of the raw configuration.
_DEGENERATE_EPS = 1e-10

# Principal variances closer than this, relative to the largest, count as tied.
_TIED_AXES = 1e-8


@dataclass(frozen=True, eq=False)
class AlignedShape:
    """Alignment output for one specimen.

    Attributes:
        specimen_id: Identifier of the source specimen
        coords: Aligned coordinates, shape (n_landmarks, n_dims)
        centroid_size: Centroid size of the raw configuration
        rotation: Rotation applied to the centered, scaled configuration
        scale: Scale factor applied to the centered configuration
    """

    specimen_id: str
    coords: NDArray[np.floating]
    centroid_size: float
    rotation: NDArray[np.floating]
    scale: float


@dataclass(frozen=True, eq=False)
class GPAResult:
    """Result of Generalized Procrustes Analysis.

    Attributes:
        aligned: Aligned landmark coordinates, shape (n_landmarks, n_dims, n_specimens)
        mean_shape: Mean shape after alignment, shape (n_landmarks, n_dims)
        centroid_sizes: Centroid size of each specimen before alignment
        ids: Specimen identifiers, in the order of the last axis of ``aligned``
        rotations: Rotation applied to each specimen, shape (n_dims, n_dims, n_specimens)
        converged: False if the iteration cap was reached before the tolerance
        iterations: Number of alignment iterations performed
        changes: Sum of squared change of the mean shape at each iteration
    """

    aligned: NDArray[np.floating]
    mean_shape: NDArray[np.floating]
    centroid_sizes: NDArray[np.floating]
    ids: tuple[str, ...]
    rotations: NDArray[np.floating]
    converged: bool
    iterations: int
    changes: NDArray[np.floating]

    def __post_init__(self) -> None:
        for name in ("aligned", "mean_shape", "centroid_sizes", "rotations", "changes"):
            getattr(self, name).flags.writeable = False

    @property
    def n_specimens(self) -> int:
        return self.aligned.shape[2]

    @property
    def shapes(self) -> list[AlignedShape]:
        """Per-specimen view of the alignment."""
        return [
            AlignedShape(
                specimen_id=self.ids[i],
                coords=self.aligned[:, :, i],
                centroid_size=float(self.centroid_sizes[i]),
                rotation=self.rotations[:, :, i],
                scale=1.0 / float(self.centroid_sizes[i]),
            )
            for i in range(self.n_specimens)
        ]


ShapeData = Union[GPAResult, "NDArray[np.floating]"]


def center(shape: NDArray[np.floating]) -> NDArray[np.floating]:
    """Center a shape by subtracting the centroid.

    Args:
        shape: Landmark coordinates, shape (n_landmarks, n_dims)

    Returns:
        Centered shape with centroid at origin
    """
    return shape - shape.mean(axis=0)


def scale(shape: NDArray[np.floating]) -> NDArray[np.floating]:
    """Scale a shape to unit centroid size (Frobenius norm).

    Args:
        shape: Landmark coordinates, shape (n_landmarks, n_dims)

    Returns:
        Scaled shape with unit centroid size
    """
    norm = np.linalg.norm(shape)
    if norm == 0:
        return shape
    return shape / norm


def centroid_size(shape: NDArray[np.floating]) -> float:
    """Compute the centroid size of a shape.

    Centroid size is the square root of the sum of squared distances
    from each landmark to the centroid.

    Args:
        shape: Landmark coordinates, shape (n_landmarks, n_dims)

    Returns:
        Centroid size (scalar)
    """
    return float(np.linalg.norm(center(shape)))


def rotation_matrix(
    shape: NDArray[np.floating],
    reference: NDArray[np.floating],
    allow_reflection: bool = False,
) -> NDArray[np.floating]:
    """Optimal rotation taking ``shape`` onto ``reference``.

    Orthogonal Procrustes solution from the SVD of the cross-covariance.
    Unless ``allow_reflection`` is set, the direction of the smallest
    singular value is flipped when needed so the result has determinant +1.

    Args:
        shape: Centered shape, shape (n_landmarks, n_dims)
        reference: Centered reference shape, shape (n_landmarks, n_dims)
        allow_reflection: Permit improper rotations (reflections)

    Returns:
        Matrix R, shape (n_dims, n_dims), minimizing ||shape @ R - reference||
    """
    u, _, vh = sp.svd(np.dot(reference.T, shape), full_matrices=True)
    rotation = np.dot(vh.T, u.T)
    if not allow_reflection and np.linalg.det(rotation) < 0:
        vh[-1, :] *= -1
        rotation = np.dot(vh.T, u.T)
    return rotation


def align(
    shape: NDArray[np.floating],
    reference: NDArray[np.floating],
    allow_reflection: bool = False,
) -> NDArray[np.floating]:
    """Align a shape to a reference shape using optimal rotation.

    Args:
        shape: Shape to align, shape (n_landmarks, n_dims)
        reference: Reference shape to align to, shape (n_landmarks, n_dims)
        allow_reflection: Permit reflections in addition to rotations

    Returns:
        Rotated shape aligned to reference
    """
    return np.dot(shape, rotation_matrix(shape, reference, allow_reflection))


def mean_shape(landmarks: NDArray[np.floating]) -> NDArray[np.floating]:
    """Compute the mean shape from multiple specimens.

    Args:
        landmarks: Landmark coordinates, shape (n_landmarks, n_dims, n_specimens)

    Returns:
        Mean shape, shape (n_landmarks, n_dims)
    """
    return landmarks.mean(axis=2)


def procrustes_distance(
    landmarks: NDArray[np.floating],
    reference: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Compute Procrustes distances from each specimen to a reference shape.

    Args:
        landmarks: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        reference: Reference shape (e.g. mean), shape (n_landmarks, n_dims)

    Returns:
        Array of Procrustes distances, shape (n_specimens,)
    """
    diff = landmarks - reference[:, :, np.newaxis]
    return np.sqrt(np.sum(diff**2, axis=(0, 1)))


def flatten(landmarks: NDArray[np.floating]) -> NDArray[np.floating]:
    """Flatten a landmark array to one row per specimen.

    Coordinates are interleaved per landmark (x1, y1, x2, y2, ...).

    Args:
        landmarks: Shape (n_landmarks, n_dims, n_specimens)

    Returns:
        Flattened array, shape (n_specimens, n_landmarks * n_dims)
    """
    n_specimens = landmarks.shape[2]
    return np.transpose(landmarks, (2, 0, 1)).reshape(n_specimens, -1)


def unflatten(flat: NDArray[np.floating], n_dims: int) -> NDArray[np.floating]:
    """Inverse of :func:`flatten` for a single row or a matrix of rows."""
    flat = np.atleast_2d(flat)
    n_specimens = flat.shape[0]
    landmarks = flat.reshape(n_specimens, -1, n_dims)
    return np.transpose(landmarks, (1, 2, 0))


def as_matrix(data: ShapeData) -> NDArray[np.floating]:
    """Coerce shape or size data to an (n_specimens, n_variables) matrix.

    Accepts a GPAResult, a (n_landmarks, n_dims, n_specimens) array, a
    (n_specimens,) vector (e.g. centroid sizes) or a (n_specimens, p) matrix.
    """
    if isinstance(data, GPAResult):
        return flatten(data.aligned)
    array = np.asarray(data, dtype=float)
    if array.ndim == 3:
        array = flatten(array)
    elif array.ndim == 1:
        array = array[:, np.newaxis]
    elif array.ndim != 2:
        raise DimensionMismatchError(
            f"Cannot interpret array of shape {array.shape} as specimen data"
        )
    if not np.all(np.isfinite(array)):
        raise MissingDataError("Specimen data contains missing values")
    return array


def generalized_procrustes(
    specimens: SpecimenSet | NDArray[np.floating],
    max_iterations: int = 50,
    tolerance: float = 1e-10,
    allow_reflection: bool = False,
    principal_axes: bool = True,
) -> GPAResult:
    """Perform Generalized Procrustes Analysis on a set of landmark configurations.

    This function aligns multiple specimen landmark configurations to minimize
    the total Procrustes distance. The algorithm:
    1. Centers each specimen and scales it to unit centroid size
    2. Takes the first specimen as the initial reference
    3. Rotates all specimens onto the reference
    4. Recomputes the reference as the re-centered, re-scaled mean shape
    5. Repeats 3-4 until the squared change of the reference drops below
       ``tolerance`` or ``max_iterations`` is reached

    Args:
        specimens: A SpecimenSet or an array of shape
            (n_landmarks, n_dims, n_specimens). Never modified.
        max_iterations: Maximum number of alignment iterations
        tolerance: Convergence threshold on the sum of squared coordinate
            changes of the mean shape between iterations
        allow_reflection: Permit reflections when rotating specimens
        principal_axes: Rotate the result so the mean shape's principal axes
            lie along the coordinate axes

    Returns:
        GPAResult containing aligned coordinates, mean shape, and centroid sizes

    Raises:
        DimensionMismatchError: If configurations are not (k, 2) or (k, 3)
        MissingDataError: If any coordinate is missing
        DegenerateShapeError: If a configuration has all landmarks coincident
    """
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")
    if tolerance < 0:
        raise ValueError("tolerance must be non-negative")

    landmarks, ids = _landmark_array(specimens)
    n_landmarks, n_dims, n_specimens = landmarks.shape

    centroid_sizes = np.zeros(n_specimens)
    scaled = np.zeros_like(landmarks)
    for i in range(n_specimens):
        centered = center(landmarks[:, :, i])
        size = float(np.linalg.norm(centered))
        limit = _DEGENERATE_EPS * max(1.0, float(np.abs(landmarks[:, :, i]).max()))
        if size < limit:
            raise DegenerateShapeError(
                f"Specimen {ids[i]!r} has zero centroid size (all landmarks coincide)"
            )
        centroid_sizes[i] = size
        scaled[:, :, i] = centered / size

    aligned = scaled
    rotations = np.repeat(np.eye(n_dims)[:, :, np.newaxis], n_specimens, axis=2)
    reference = scaled[:, :, 0].copy()
    changes = []
    converged = False

    for iteration in range(1, max_iterations + 1):
        aligned, rotations = _rotate_all(
            scaled, rotations, aligned, reference, allow_reflection
        )
        new_reference = scale(center(mean_shape(aligned)))
        change = float(np.sum((new_reference - reference) ** 2))
        changes.append(change)
        reference = new_reference
        logger.debug("GPA iteration %d: reference change %.3e", iteration, change)
        if change < tolerance:
            converged = True
            break

    if not converged:
        message = (
            f"GPA did not converge within {max_iterations} iterations "
            f"(last change {changes[-1]:.3e}, tolerance {tolerance:.1e})"
        )
        logger.warning(message)
        warnings.warn(message, ConvergenceWarning, stacklevel=2)

    if principal_axes:
        axes = _principal_axes(reference, allow_reflection)
        reference = np.dot(reference, axes)
        aligned = np.einsum("kdn,de->ken", aligned, axes)
        rotations = np.einsum("ijn,jk->ikn", rotations, axes)

    logger.info(
        "Aligned %d specimens (%d landmarks, %dD) in %d iterations",
        n_specimens,
        n_landmarks,
        n_dims,
        len(changes),
    )

    return GPAResult(
        aligned=aligned,
        mean_shape=reference,
        centroid_sizes=centroid_sizes,
        ids=ids,
        rotations=rotations,
        converged=converged,
        iterations=len(changes),
        changes=np.array(changes),
    )


def _landmark_array(
    specimens: SpecimenSet | NDArray[np.floating],
) -> tuple[NDArray[np.floating], tuple[str, ...]]:
    """Validate input and return a fresh (k, d, n) array with specimen ids."""
    if isinstance(specimens, SpecimenSet):
        return specimens.landmarks, specimens.ids

    landmarks = np.array(specimens, dtype=float)
    if landmarks.ndim != 3:
        raise DimensionMismatchError(
            "Expected an array of shape (n_landmarks, n_dims, n_specimens), "
            f"got {landmarks.shape}"
        )
    if landmarks.shape[1] not in SUPPORTED_DIMS:
        raise DimensionMismatchError(
            f"Landmarks must have 2 or 3 dimensions, got {landmarks.shape[1]}"
        )
    if not np.all(np.isfinite(landmarks)):
        bad = np.unique(np.nonzero(~np.isfinite(landmarks))[2])
        raise MissingDataError(
            f"Specimens {bad.tolist()} have missing coordinates"
        )
    ids = tuple(str(i) for i in range(landmarks.shape[2]))
    return landmarks, ids


def _rotate_all(
    scaled: NDArray[np.floating],
    rotations: NDArray[np.floating],
    current: NDArray[np.floating],
    reference: NDArray[np.floating],
    allow_reflection: bool,
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Rotate every specimen onto the reference.

    Returns new arrays; the cumulative rotation of each specimen is tracked
    relative to its centered, scaled input.
    """
    n_specimens = scaled.shape[2]
    aligned = np.empty_like(current)
    new_rotations = np.empty_like(rotations)
    for i in range(n_specimens):
        step = rotation_matrix(current[:, :, i], reference, allow_reflection)
        new_rotations[:, :, i] = np.dot(rotations[:, :, i], step)
        aligned[:, :, i] = np.dot(scaled[:, :, i], new_rotations[:, :, i])
    return aligned, new_rotations


def _principal_axes(
    reference: NDArray[np.floating],
    allow_reflection: bool,
) -> NDArray[np.floating]:
    """Rotation taking the reference onto its principal axes.

    Each axis is oriented so the first landmark with a non-negligible
    coordinate on it is positive. Without reflections only the first
    n_dims - 1 axes are oriented this way and the last one keeps the
    determinant at +1.

    When two principal variances coincide (e.g. a square or a regular
    polygon) the principal axes are not unique, and the frame is taken
    from the landmarks instead; see :func:`_landmark_axes`.
    """
    n_dims = reference.shape[1]
    _, singular_values, vh = sp.svd(reference, full_matrices=True)
    spread = np.zeros(n_dims)
    spread[: len(singular_values)] = singular_values
    if np.any(spread[:-1] - spread[1:] <= _TIED_AXES * spread[0]):
        return _landmark_axes(reference, allow_reflection)

    axes = vh.T.copy()
    projected = np.dot(reference, axes)
    largest = np.abs(projected).max()
    n_oriented = n_dims if allow_reflection else n_dims - 1
    for j in range(n_oriented):
        column = projected[:, j]
        if np.abs(column).max() <= 1e-12 * largest:
            continue
        significant = np.abs(column) > 1e-6 * np.abs(column).max()
        first = int(np.argmax(significant))
        if column[first] < 0:
            axes[:, j] *= -1
    if not allow_reflection and np.linalg.det(axes) < 0:
        axes[:, -1] *= -1
    return axes


def _landmark_axes(
    reference: NDArray[np.floating],
    allow_reflection: bool,
) -> NDArray[np.floating]:
    """Orthonormal frame spanned by the landmarks, in landmark order.

    The first axis points at the first landmark away from the centroid,
    the next at the part of the following landmark orthogonal to it, and
    so on. Axes the landmarks do not span complete the frame with
    determinant +1.
    """
    n_dims = reference.shape[1]
    limit = 1e-6 * np.linalg.norm(reference, axis=1).max()
    n_landmark_axes = n_dims if allow_reflection else n_dims - 1
    axes = []
    for point in reference:
        if len(axes) == n_landmark_axes:
            break
        residual = point - sum(np.dot(point, a) * a for a in axes)
        length = np.linalg.norm(residual)
        if length > limit:
            axes.append(residual / length)

    found = len(axes)
    if found < n_dims:
        complement = sp.null_space(np.array(axes)) if axes else np.eye(n_dims)
        axes.extend(complement.T[: n_dims - len(axes)])
    frame = np.column_stack(axes)
    if np.linalg.det(frame) < 0 and (not allow_reflection or found < n_dims):
        frame[:, -1] *= -1
    return frame
