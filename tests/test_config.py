"""Tests for analysis configuration."""

import pytest

from wingmorph import AnalysisConfig


class TestAnalysisConfig:
    def test_defaults(self):
        config = AnalysisConfig()

        assert config.permutations == 999
        assert config.seed is None
        assert config.tolerance == 1e-10
        assert config.validation == "loo"
        assert config.size_disparity_distance == "mahalanobis"

    def test_is_frozen(self):
        config = AnalysisConfig()

        with pytest.raises(AttributeError):
            config.permutations = 10

    def test_sequences_become_tuples(self):
        config = AnalysisConfig(factors=["site", "tree"], gradients=["tree"])

        assert config.factors == ("site", "tree")
        assert config.gradients == ("tree",)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"permutations": 0},
            {"seed": -1},
            {"tolerance": -1e-3},
            {"max_iterations": 0},
            {"validation": "bootstrap"},
            {"folds": 1},
            {"test_size": 0.0},
            {"disparity_distance": "manhattan"},
            {"size_disparity_distance": "cosine"},
            {"geo_method": "vincenty"},
            {"workers": 0},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            AnalysisConfig(**kwargs)

    def test_from_mapping(self):
        config = AnalysisConfig.from_mapping({"permutations": 99, "seed": 7})

        assert config.permutations == 99
        assert config.seed == 7

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="perms"):
            AnalysisConfig.from_mapping({"perms": 99})
