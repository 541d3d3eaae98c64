"""
Specimen data model.

Specimens arrive from an external ingestion step already parsed and cleaned.
This module validates the invariants the analysis core relies on (fixed
landmark count and dimensionality, complete coordinates, unique identifiers)
and exposes the stacked ``(n_landmarks, n_dims, n_specimens)`` array used by
the rest of the library.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import numpy as np

from wingmorph.errors import DimensionMismatchError, MissingDataError

if TYPE_CHECKING:
    from numpy.typing import NDArray

SUPPORTED_DIMS = (2, 3)


@dataclass(frozen=True, eq=False)
class Specimen:
    """One digitized specimen.

    Attributes:
        id: Unique specimen identifier
        landmarks: Landmark coordinates, shape (n_landmarks, n_dims)
        labels: Categorical metadata (e.g. species, site)
        covariates: Numeric metadata (e.g. latitude, tree-cover gradient)
    """

    id: str
    landmarks: NDArray[np.floating]
    labels: Mapping[str, str] = field(default_factory=dict)
    covariates: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        coords = np.array(self.landmarks, dtype=float)
        if coords.ndim != 2:
            raise DimensionMismatchError(
                f"Specimen {self.id!r}: landmarks must be 2-D (n_landmarks, n_dims), "
                f"got shape {coords.shape}"
            )
        if coords.shape[1] not in SUPPORTED_DIMS:
            raise DimensionMismatchError(
                f"Specimen {self.id!r}: landmarks must have 2 or 3 dimensions, "
                f"got {coords.shape[1]}"
            )
        if not np.all(np.isfinite(coords)):
            missing = np.unique(np.nonzero(~np.isfinite(coords))[0]) + 1
            raise MissingDataError(
                f"Specimen {self.id!r} has missing coordinates at landmarks "
                f"{missing.tolist()}"
            )
        coords.flags.writeable = False
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "landmarks", coords)
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))
        object.__setattr__(
            self, "covariates", MappingProxyType(dict(self.covariates))
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.landmarks.shape


class SpecimenSet(Sequence):
    """Ordered, immutable collection of specimens sharing k and d."""

    def __init__(self, specimens: Iterable[Specimen]):
        items = tuple(specimens)
        if not items:
            raise ValueError("A specimen set needs at least one specimen")

        seen: set[str] = set()
        for specimen in items:
            if specimen.id in seen:
                raise ValueError(f"Duplicate specimen id: {specimen.id!r}")
            seen.add(specimen.id)

        expected = items[0].shape
        for specimen in items[1:]:
            if specimen.shape != expected:
                raise DimensionMismatchError(
                    f"Specimen {specimen.id!r} has landmark shape {specimen.shape}, "
                    f"expected {expected}"
                )

        self._specimens = items

    @classmethod
    def from_array(
        cls,
        landmarks: NDArray[np.floating],
        ids: Sequence[str] | None = None,
    ) -> SpecimenSet:
        """Build a set from a (n_landmarks, n_dims, n_specimens) array."""
        landmarks = np.asarray(landmarks, dtype=float)
        if landmarks.ndim != 3:
            raise DimensionMismatchError(
                "Expected an array of shape (n_landmarks, n_dims, n_specimens), "
                f"got {landmarks.shape}"
            )
        n_specimens = landmarks.shape[2]
        if ids is None:
            ids = [str(i) for i in range(n_specimens)]
        if len(ids) != n_specimens:
            raise DimensionMismatchError(
                f"Got {len(ids)} ids for {n_specimens} specimens"
            )
        return cls(
            Specimen(id=ids[i], landmarks=landmarks[:, :, i])
            for i in range(n_specimens)
        )

    def __len__(self) -> int:
        return len(self._specimens)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return SpecimenSet(self._specimens[index])
        return self._specimens[index]

    def __iter__(self) -> Iterator[Specimen]:
        return iter(self._specimens)

    def __repr__(self) -> str:
        return (
            f"SpecimenSet(n={len(self)}, n_landmarks={self.n_landmarks}, "
            f"n_dims={self.n_dims})"
        )

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self._specimens)

    @property
    def n_landmarks(self) -> int:
        return self._specimens[0].shape[0]

    @property
    def n_dims(self) -> int:
        return self._specimens[0].shape[1]

    @property
    def landmarks(self) -> NDArray[np.floating]:
        """Stacked coordinates, shape (n_landmarks, n_dims, n_specimens)."""
        return np.stack([s.landmarks for s in self._specimens], axis=2)

    def labels(self, name: str) -> list[str]:
        """Return one categorical label per specimen.

        Raises:
            MissingDataError: If any specimen lacks the label
        """
        values = []
        for specimen in self._specimens:
            value = specimen.labels.get(name)
            if value is None:
                raise MissingDataError(
                    f"Specimen {specimen.id!r} has no label {name!r}"
                )
            values.append(value)
        return values

    def covariate(self, name: str) -> NDArray[np.floating]:
        """Return one numeric covariate value per specimen.

        Raises:
            MissingDataError: If any specimen lacks the covariate or it is NaN
        """
        values = np.zeros(len(self._specimens))
        for i, specimen in enumerate(self._specimens):
            value = specimen.covariates.get(name)
            if value is None or not math.isfinite(value):
                raise MissingDataError(
                    f"Specimen {specimen.id!r} has no value for covariate {name!r}"
                )
            values[i] = value
        return values

    def has_label(self, name: str) -> bool:
        return all(name in s.labels for s in self._specimens)

    def has_covariate(self, name: str) -> bool:
        return all(name in s.covariates for s in self._specimens)

    def subset(self, ids: Iterable[str]) -> SpecimenSet:
        """Return the specimens with the given ids, in the order given."""
        by_id = {s.id: s for s in self._specimens}
        wanted = list(ids)
        unknown = [i for i in wanted if i not in by_id]
        if unknown:
            raise KeyError(f"Unknown specimen ids: {unknown}")
        return SpecimenSet(by_id[i] for i in wanted)
