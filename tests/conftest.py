"""Shared fixtures for wingmorph tests."""

import numpy as np
import pytest

from wingmorph import Specimen, SpecimenSet


@pytest.fixture
def random_rotation():
    """Return a function drawing a proper rotation matrix of a given size."""

    def draw(rng, n_dims):
        q, r = np.linalg.qr(rng.normal(size=(n_dims, n_dims)))
        q = q * np.sign(np.diag(r))
        if np.linalg.det(q) < 0:
            q[:, 0] *= -1
        return q

    return draw


@pytest.fixture
def wing_landmarks():
    """20 noisy copies of one 8-landmark 2D configuration, shape (8, 2, 20)."""
    rng = np.random.default_rng(7)
    base = rng.normal(size=(8, 2))
    noise = 0.05 * rng.normal(size=(8, 2, 20))
    return base[:, :, np.newaxis] + noise


@pytest.fixture
def two_species_landmarks():
    """Two well-separated shape classes of 15 specimens each, 6 landmarks in 2D."""
    rng = np.random.default_rng(11)
    base = np.array(
        [[0.0, 0.0], [1.0, 0.1], [2.0, 0.0], [2.2, 1.0], [1.0, 1.3], [-0.2, 0.9]]
    )
    other = base.copy()
    other[4] += [0.0, 0.8]
    other[1] -= [0.0, 0.4]
    configs = [base + 0.01 * rng.normal(size=base.shape) for _ in range(15)]
    configs += [other + 0.01 * rng.normal(size=base.shape) for _ in range(15)]
    labels = ["Cx. pipiens"] * 15 + ["Cx. torrentium"] * 15
    return np.stack(configs, axis=2), labels


@pytest.fixture
def field_specimens():
    """36 specimens from three sites with species, coordinates and gradients."""
    rng = np.random.default_rng(3)
    base = rng.normal(size=(10, 2))
    sites = {"Forst": (50.95, 6.90), "Lindenthal": (50.93, 6.92), "Porz": (50.88, 7.06)}
    specimens = []
    for s, (site, (lat, lon)) in enumerate(sites.items()):
        for i in range(12):
            number = 100 + 12 * s + i
            species = "Cx. pipiens" if i % 2 else "Cx. pipiens molestus"
            coords = base + 0.04 * rng.normal(size=base.shape)
            if species == "Cx. pipiens molestus":
                coords[3] += [0.3, 0.0]
            specimens.append(
                Specimen(
                    id=f"{number}l",
                    landmarks=coords * rng.uniform(0.9, 1.1),
                    labels={"site": site, "species": species},
                    covariates={
                        "latitude": lat + 0.001 * rng.normal(),
                        "longitude": lon + 0.001 * rng.normal(),
                        "tree": 10.0 + 8.0 * s + rng.normal(),
                    },
                )
            )
    return SpecimenSet(specimens)
