"""
Principal components of wing shape variation.

PCA of the flattened aligned coordinates, plus helpers to deform the mean
wing along a component and to place specimens in a two-component morphospace
for plotting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sp

from wingmorph.gpa import GPAResult, flatten, unflatten

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass(frozen=True, eq=False)
class PCAResult:
    """Principal components of a set of aligned shapes.

    Attributes:
        scores: Specimen coordinates on each component, (n_specimens, n_components)
        vectors: Unit loadings, one column per component, (n_coords, n_components)
        values: Component variances, largest first
        variance_explained: Share of total shape variance per component
        mean: Consensus the data were centered on, (n_landmarks, n_dims)
    """

    scores: NDArray[np.floating]
    vectors: NDArray[np.floating]
    values: NDArray[np.floating]
    variance_explained: NDArray[np.floating]
    mean: NDArray[np.floating]


def pca(
    landmarks: GPAResult | NDArray[np.floating],
    n_components: int | None = None,
) -> PCAResult:
    """Decompose shape variation into principal components.

    The decomposition is an SVD of the centered (n_specimens, n_coords)
    data matrix; eigenvalues use an n - 1 divisor.

    Args:
        landmarks: GPAResult or aligned coordinates, shape
            (n_landmarks, n_dims, n_specimens)
        n_components: Components to keep; all min(n_specimens, n_coords)
            when None

    Returns:
        PCAResult
    """
    if isinstance(landmarks, GPAResult):
        landmarks = landmarks.aligned
    n_landmarks, n_dims, n_specimens = landmarks.shape
    n_coords = n_landmarks * n_dims

    max_components = min(n_specimens, n_coords)
    if n_components is None:
        n_components = max_components
    if not 1 <= n_components <= max_components:
        raise ValueError(
            f"n_components must be between 1 and {max_components}, got {n_components}"
        )

    flat = flatten(landmarks)
    mean_vec = flat.mean(axis=0)
    centered = flat - mean_vec

    _, singular_values, vh = sp.svd(centered, full_matrices=False)
    divisor = max(n_specimens - 1, 1)
    eigenvalues = singular_values**2 / divisor
    vectors = vh.T

    total = eigenvalues.sum()
    share = eigenvalues / total if total > 0 else np.zeros_like(eigenvalues)

    vectors = vectors[:, :n_components]
    return PCAResult(
        scores=np.dot(centered, vectors),
        vectors=vectors,
        values=eigenvalues[:n_components],
        variance_explained=share[:n_components],
        mean=unflatten(mean_vec, n_dims)[:, :, 0],
    )


def warp_along_pc(
    mean_shape: NDArray[np.floating],
    pca_result: PCAResult,
    pc: int,
    magnitude: float,
) -> NDArray[np.floating]:
    """Deform the mean shape along one component.

    Args:
        mean_shape: Shape to deform, (n_landmarks, n_dims)
        pca_result: Components to deform along
        pc: Component number, counting from 1
        magnitude: Displacement in standard deviations of the component

    Returns:
        Deformed coordinates, (n_landmarks, n_dims)
    """
    pc_index = _pc_index(pc, pca_result)
    value = pca_result.values[pc_index]
    std = np.sqrt(value) if value > 0 else 1.0
    shift = pca_result.vectors[:, pc_index] * magnitude * std
    return mean_shape + unflatten(shift, mean_shape.shape[1])[:, :, 0]


def project_to_pc_space(
    landmarks: NDArray[np.floating],
    pca_result: PCAResult,
    pc_x: int = 1,
    pc_y: int = 2,
) -> NDArray[np.floating]:
    """Scores of (possibly new) specimens on two components.

    Args:
        landmarks: Aligned coordinates, (n_landmarks, n_dims, n_specimens)
        pca_result: Components to project onto
        pc_x: Component on the horizontal axis, counting from 1
        pc_y: Component on the vertical axis

    Returns:
        Array of shape (n_specimens, 2)
    """
    centered = flatten(landmarks) - flatten(pca_result.mean[:, :, np.newaxis])
    columns = [_pc_index(pc_x, pca_result), _pc_index(pc_y, pca_result)]
    return np.dot(centered, pca_result.vectors[:, columns])


def _pc_index(pc: int, pca_result: PCAResult) -> int:
    n_available = pca_result.vectors.shape[1]
    if pc < 1 or pc > n_available:
        raise ValueError(f"PC {pc} is out of range. Available: 1-{n_available}")
    return pc - 1
