"""Tests for GPA module."""

import numpy as np
import pytest

from wingmorph import (
    ConvergenceWarning,
    DegenerateShapeError,
    DimensionMismatchError,
    MissingDataError,
    SpecimenSet,
    align,
    center,
    centroid_size,
    flatten,
    generalized_procrustes,
    mean_shape,
    procrustes_distance,
    scale,
)
from wingmorph.gpa import as_matrix, rotation_matrix, unflatten


def rotation_2d(theta):
    return np.array([[np.cos(theta), -np.sin(theta)], [np.sin(theta), np.cos(theta)]])


class TestCenter:
    def test_center_moves_centroid_to_origin(self):
        shape = np.array([[1.0, 2.0], [4.0, 5.0], [7.0, 9.0]])
        centered = center(shape)

        np.testing.assert_array_almost_equal(centered.mean(axis=0), [0.0, 0.0])

    def test_center_preserves_relative_positions(self):
        shape = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        centered = center(shape)

        np.testing.assert_almost_equal(
            np.linalg.norm(shape[0] - shape[1]), np.linalg.norm(centered[0] - centered[1])
        )


class TestScale:
    def test_scale_normalizes_to_unit_norm(self):
        shape = np.array([[1.0, 0.0], [0.0, 2.0], [3.0, 0.0]])

        np.testing.assert_almost_equal(np.linalg.norm(scale(shape)), 1.0)

    def test_scale_handles_zero_shape(self):
        shape = np.zeros((3, 2))

        np.testing.assert_array_equal(scale(shape), shape)


class TestCentroidSize:
    def test_centroid_size_is_translation_invariant(self):
        shape = np.array([[0.0, 0.0], [3.0, 0.0], [0.0, 4.0]])

        np.testing.assert_almost_equal(centroid_size(shape), centroid_size(shape + 10.0))

    def test_centroid_size_scales_linearly(self):
        shape = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])

        np.testing.assert_almost_equal(centroid_size(shape * 2), centroid_size(shape) * 2)


class TestAlign:
    def test_align_recovers_rotated_shape(self):
        ref = center(np.array([[0.0, 0.0], [2.0, 0.0], [0.5, 1.5], [1.0, -0.7]]))
        rotated = np.dot(ref, rotation_2d(1.1))

        np.testing.assert_array_almost_equal(align(rotated, ref), ref)

    def test_align_3d(self, random_rotation):
        rng = np.random.default_rng(0)
        ref = center(rng.normal(size=(6, 3)))
        rotated = np.dot(ref, random_rotation(rng, 3))

        np.testing.assert_array_almost_equal(align(rotated, ref), ref)

    def test_reflection_only_when_allowed(self):
        ref = center(np.array([[0.0, 0.0], [3.0, 0.0], [0.5, 1.0], [1.0, 2.5]]))
        mirrored = ref * np.array([-1.0, 1.0])

        proper = rotation_matrix(mirrored, ref)
        improper = rotation_matrix(mirrored, ref, allow_reflection=True)

        assert np.linalg.det(proper) == pytest.approx(1.0)
        assert np.linalg.det(improper) == pytest.approx(-1.0)
        np.testing.assert_array_almost_equal(align(mirrored, ref, allow_reflection=True), ref)
        assert np.linalg.norm(align(mirrored, ref) - ref) > 0.1

    def test_align_preserves_shape(self):
        ref = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        shape = np.array([[0.0, 0.0], [0.0, 1.0], [-1.0, 0.0]])

        aligned = align(shape, ref)

        orig = [np.linalg.norm(shape[i] - shape[j]) for i in range(3) for j in range(i + 1, 3)]
        new = [np.linalg.norm(aligned[i] - aligned[j]) for i in range(3) for j in range(i + 1, 3)]
        np.testing.assert_array_almost_equal(orig, new)


class TestMeanShapeAndDistance:
    def test_mean_shape_multiple_specimens(self):
        landmarks = np.zeros((3, 2, 2))
        landmarks[:, :, 0] = [[0, 0], [2, 0], [0, 2]]
        landmarks[:, :, 1] = [[0, 0], [4, 0], [0, 4]]

        np.testing.assert_array_equal(mean_shape(landmarks), [[0, 0], [3, 0], [0, 3]])

    def test_procrustes_distance(self):
        landmarks = np.zeros((3, 2, 2))
        landmarks[:, :, 0] = [[0, 0], [1, 0], [0, 1]]
        landmarks[:, :, 1] = [[0, 0], [1, 0], [0, 3]]

        dists = procrustes_distance(landmarks, landmarks[:, :, 0])

        np.testing.assert_array_almost_equal(dists, [0.0, 2.0])


class TestFlatten:
    def test_flatten_interleaves_coordinates(self):
        landmarks = np.zeros((2, 2, 1))
        landmarks[:, :, 0] = [[1, 2], [3, 4]]

        np.testing.assert_array_equal(flatten(landmarks), [[1, 2, 3, 4]])

    def test_unflatten_inverts_flatten(self, wing_landmarks):
        np.testing.assert_array_equal(unflatten(flatten(wing_landmarks), 2), wing_landmarks)

    def test_as_matrix_accepts_sizes(self):
        assert as_matrix(np.arange(4.0)).shape == (4, 1)

    def test_as_matrix_rejects_missing(self):
        with pytest.raises(MissingDataError):
            as_matrix(np.array([1.0, np.nan]))


class TestGeneralizedProcrustes:
    def test_gpa_aligns_translated_shapes(self):
        landmarks = np.zeros((3, 3, 2))
        landmarks[:, :, 0] = [[0, 0, 0], [1, 0, 0], [0, 1, 0]]
        landmarks[:, :, 1] = [[10, 10, 10], [11, 10, 10], [10, 11, 10]]

        result = generalized_procrustes(landmarks)

        np.testing.assert_allclose(result.aligned[:, :, 0], result.aligned[:, :, 1], atol=1e-8)

    def test_gpa_returns_centroid_sizes(self):
        landmarks = np.zeros((3, 2, 2))
        landmarks[:, :, 0] = [[0, 0], [1, 0], [0, 1]]
        landmarks[:, :, 1] = [[0, 0], [2, 0], [0, 2]]

        result = generalized_procrustes(landmarks)

        np.testing.assert_allclose(result.centroid_sizes[1], 2 * result.centroid_sizes[0])

    def test_gpa_does_not_modify_input(self, wing_landmarks):
        original = wing_landmarks.copy()

        generalized_procrustes(wing_landmarks)

        np.testing.assert_array_equal(wing_landmarks, original)

    def test_result_is_read_only(self, wing_landmarks):
        result = generalized_procrustes(wing_landmarks)

        with pytest.raises(ValueError):
            result.aligned[0, 0, 0] = 1.0

    def test_same_triangle_in_different_poses(self):
        # Three vertices and the midpoint of one edge
        triangle = np.array([[0.0, 0.0], [4.0, 0.0], [1.0, 3.0], [2.0, 0.0]])
        poses = [
            triangle,
            2.5 * np.dot(triangle, rotation_2d(0.6)) + [3.0, -1.0],
            0.4 * np.dot(triangle, rotation_2d(-2.0)) + [-7.0, 5.0],
        ]

        result = generalized_procrustes(np.stack(poses, axis=2))

        np.testing.assert_allclose(result.aligned[:, :, 1], result.aligned[:, :, 0], atol=1e-8)
        np.testing.assert_allclose(result.aligned[:, :, 2], result.aligned[:, :, 0], atol=1e-8)

    @pytest.mark.parametrize("n_dims", [2, 3])
    def test_alignment_invariant_to_similarity_transforms(self, random_rotation, n_dims):
        rng = np.random.default_rng(21)
        base = rng.normal(size=(7, n_dims))
        landmarks = base[:, :, np.newaxis] + 0.05 * rng.normal(size=(7, n_dims, 12))
        transformed = np.empty_like(landmarks)
        for i in range(12):
            rotation = random_rotation(rng, n_dims)
            transformed[:, :, i] = (
                rng.uniform(0.2, 5.0) * np.dot(landmarks[:, :, i], rotation)
                + rng.normal(scale=10.0, size=n_dims)
            )

        expected = generalized_procrustes(landmarks)
        result = generalized_procrustes(transformed)

        np.testing.assert_allclose(result.aligned, expected.aligned, atol=1e-8)
        np.testing.assert_allclose(result.mean_shape, expected.mean_shape, atol=1e-8)

    def test_aligned_shapes_centered_with_unit_size(self, wing_landmarks):
        result = generalized_procrustes(wing_landmarks)

        np.testing.assert_allclose(result.aligned.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(
            np.linalg.norm(result.aligned, axis=(0, 1)), 1.0, atol=1e-12
        )
        np.testing.assert_allclose(np.linalg.norm(result.mean_shape), 1.0)

    def test_reference_change_is_non_increasing(self, wing_landmarks):
        result = generalized_procrustes(wing_landmarks, tolerance=1e-14)

        assert result.converged
        assert result.iterations == len(result.changes) >= 2
        assert np.all(np.diff(result.changes) <= 1e-18)

    def test_rotation_maps_scaled_input_to_output(self, wing_landmarks):
        result = generalized_procrustes(wing_landmarks)

        for i, shape in enumerate(result.shapes):
            raw = wing_landmarks[:, :, i]
            expected = np.dot(center(raw) * shape.scale, shape.rotation)
            np.testing.assert_allclose(shape.coords, expected, atol=1e-12)
            assert np.linalg.det(shape.rotation) == pytest.approx(1.0)
            assert shape.centroid_size == pytest.approx(centroid_size(raw))

    def test_specimen_ids_carried_through(self, wing_landmarks):
        ids = [f"W{i}" for i in range(20)]
        specimens = SpecimenSet.from_array(wing_landmarks, ids)

        result = generalized_procrustes(specimens)

        assert result.ids == tuple(ids)
        assert [s.specimen_id for s in result.shapes] == ids

    def test_iteration_cap_is_reported(self, wing_landmarks):
        with pytest.warns(ConvergenceWarning):
            result = generalized_procrustes(wing_landmarks, max_iterations=1, tolerance=0.0)

        assert not result.converged
        assert result.iterations == 1

    @pytest.mark.parametrize("n_dims", [2, 3])
    def test_symmetric_consensus_invariant_to_global_rotation(self, random_rotation, n_dims):
        square = np.array([[1.0, 1.0], [-1.0, 1.0], [-1.0, -1.0], [1.0, -1.0]])
        if n_dims == 3:
            square = np.column_stack([square, np.zeros(4)])
        rng = np.random.default_rng(30)
        poses = [
            rng.uniform(0.5, 2.0) * np.dot(square, random_rotation(rng, n_dims))
            for _ in range(3)
        ]
        landmarks = np.stack(poses, axis=2)
        turned = np.einsum("kdn,de->ken", landmarks, random_rotation(rng, n_dims))

        expected = generalized_procrustes(landmarks)
        result = generalized_procrustes(turned)

        np.testing.assert_allclose(result.aligned, expected.aligned, atol=1e-8)
        np.testing.assert_allclose(result.mean_shape, expected.mean_shape, atol=1e-8)

    def test_fewer_landmarks_than_dimensions(self):
        rng = np.random.default_rng(12)

        result = generalized_procrustes(rng.normal(size=(2, 3, 4)))

        assert result.converged
        assert result.aligned.shape == (2, 3, 4)
        np.testing.assert_allclose(result.aligned.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(np.linalg.norm(result.aligned, axis=(0, 1)), 1.0)
        for i in range(4):
            assert np.linalg.det(result.rotations[:, :, i]) == pytest.approx(1.0)

    def test_degenerate_shape_raises(self, wing_landmarks):
        landmarks = wing_landmarks.copy()
        landmarks[:, :, 4] = [3.0, -2.0]

        with pytest.raises(DegenerateShapeError, match="'4'"):
            generalized_procrustes(landmarks)

    def test_missing_coordinates_raise(self, wing_landmarks):
        landmarks = wing_landmarks.copy()
        landmarks[2, 1, 5] = np.nan

        with pytest.raises(MissingDataError):
            generalized_procrustes(landmarks)

    def test_unsupported_dimensionality_raises(self):
        with pytest.raises(DimensionMismatchError):
            generalized_procrustes(np.zeros((5, 4, 3)))

    def test_invalid_settings_raise(self, wing_landmarks):
        with pytest.raises(ValueError):
            generalized_procrustes(wing_landmarks, max_iterations=0)
