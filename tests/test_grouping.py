"""Tests for group bookkeeping."""

import numpy as np
import pytest

from wingmorph import (
    LabelMismatchError,
    MissingDataError,
    assign_groups,
    group_indices,
    threshold_category,
)
from wingmorph.grouping import group_codes, specimen_number


class TestGroupIndices:
    def test_groups_sorted_by_label(self):
        groups = group_indices(["Porz", "Forst", "Porz", "Lindenthal"])

        assert list(groups) == ["Forst", "Lindenthal", "Porz"]
        np.testing.assert_array_equal(groups["Porz"], [0, 2])

    def test_codes_follow_group_order(self):
        groups = group_indices(["b", "a", "b"])

        np.testing.assert_array_equal(group_codes(groups, 3), [1, 0, 1])

    def test_missing_label(self):
        with pytest.raises(MissingDataError):
            group_indices(["a", None, "b"])

        with pytest.raises(MissingDataError):
            group_indices([1.0, float("nan")])


class TestSpecimenNumber:
    @pytest.mark.parametrize(
        "label, expected",
        [("474l", "474"), ("26r_1", "26"), (" 47411r ", "47411"), ("x12", None)],
    )
    def test_leading_digits(self, label, expected):
        assert specimen_number(label) == expected


class TestAssignGroups:
    def test_exact_id_match(self):
        groups = {"Cx. pipiens molestus": ["474", "26"]}

        assigned = assign_groups(
            ["474l", "47411r", "26r_1", "2r"], groups, default="Cx. pipiens"
        )

        assert assigned == [
            "Cx. pipiens molestus",
            "Cx. pipiens",
            "Cx. pipiens molestus",
            "Cx. pipiens",
        ]

    def test_label_without_number_gets_default(self):
        assert assign_groups(["blank"], {"A": ["1"]}, default="B") == ["B"]

    def test_id_in_two_groups(self):
        with pytest.raises(LabelMismatchError):
            assign_groups(["1l"], {"A": ["1"], "B": [1]}, default="C")


class TestThresholdCategory:
    def test_threshold_is_inclusive_low(self):
        assert threshold_category([0.5, 1.0, 1.5], 1.0, "open", "forest") == [
            "open",
            "open",
            "forest",
        ]

    def test_missing_values(self):
        with pytest.raises(MissingDataError):
            threshold_category([0.5, float("nan")], 1.0, "open", "forest")
