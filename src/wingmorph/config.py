"""
Analysis configuration.

Everything the caller controls about a run (permutation count, seed, GPA
convergence settings, cross-validation scheme, distance choices and the
metadata fields the pipeline reads) lives in one frozen dataclass. The core
never reads configuration from files or the environment.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from wingmorph.disparity import DISTANCES
from wingmorph.distance import GEO_METHODS
from wingmorph.lda import VALIDATIONS


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for a wingmorph analysis run.

    Attributes:
        permutations: Permutation trials per test
        seed: Root seed for permutation tests and data splits
        tolerance: GPA convergence threshold on the squared mean-shape change
        max_iterations: GPA iteration cap
        allow_reflection: Permit reflections during Procrustes rotation
        validation: "loo" or "kfold" cross-validation for the classifier
        folds: Fold count for k-fold cross-validation
        test_size: Held-out proportion of the classifier's visualization split
        disparity_distance: Distance for shape disparity
        size_disparity_distance: Distance for centroid-size disparity
        workers: Threads used for permutation trials
        group_label: Specimen label holding the sampling site
        species_label: Specimen label holding the species, for classification
        factors: Labels and covariates entering the shape ANOVA, in order
        gradients: Covariates tested against genetic distance by Mantel test
        latitude: Covariate holding latitude
        longitude: Covariate holding longitude
        geo_method: "euclidean" or "haversine" geographic distance
    """

    permutations: int = 999
    seed: int | None = None
    tolerance: float = 1e-10
    max_iterations: int = 50
    allow_reflection: bool = False
    validation: str = "loo"
    folds: int = 5
    test_size: float = 0.2
    disparity_distance: str = "euclidean"
    size_disparity_distance: str = "mahalanobis"
    workers: int = 1
    group_label: str = "site"
    species_label: str = "species"
    factors: tuple[str, ...] = ()
    gradients: tuple[str, ...] = ()
    latitude: str = "latitude"
    longitude: str = "longitude"
    geo_method: str = "euclidean"

    def __post_init__(self) -> None:
        if self.permutations < 1:
            raise ValueError("permutations must be at least 1")
        if self.seed is not None and self.seed < 0:
            raise ValueError("seed must be non-negative")
        if self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.validation not in VALIDATIONS:
            raise ValueError(f"validation must be one of {VALIDATIONS}")
        if self.folds < 2:
            raise ValueError("folds must be at least 2")
        if not 0 < self.test_size < 1:
            raise ValueError("test_size must be between 0 and 1")
        for name in ("disparity_distance", "size_disparity_distance"):
            if getattr(self, name) not in DISTANCES:
                raise ValueError(f"{name} must be one of {DISTANCES}")
        if self.geo_method not in GEO_METHODS:
            raise ValueError(f"geo_method must be one of {GEO_METHODS}")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        object.__setattr__(self, "factors", tuple(self.factors))
        object.__setattr__(self, "gradients", tuple(self.gradients))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> AnalysisConfig:
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        return cls(**values)
