"""
Batch analysis of one specimen set.

Runs the standard sequence of a wing geometric-morphometrics study:
alignment, PCA, Procrustes ANOVA of shape and size, per-site disparity,
allometry, Mantel tests of shape, geography, genetics and environmental
gradients, and species classification. Steps whose metadata are absent are
skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from wingmorph.anova import AnovaResult, allometry, procrustes_anova
from wingmorph.config import AnalysisConfig
from wingmorph.disparity import DisparityResult, morphological_disparity
from wingmorph.distance import (
    DistanceMatrix,
    covariate_distance,
    geo_distance,
    reconcile,
    shape_distance,
)
from wingmorph.errors import MissingDataError
from wingmorph.gpa import GPAResult, generalized_procrustes
from wingmorph.lda import ClassificationResult, classify
from wingmorph.mantel import mantel
from wingmorph.pca import PCAResult, pca
from wingmorph.permutation import PermutationTestResult
from wingmorph.specimens import SpecimenSet

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Everything computed by :func:`run_analysis`.

    Mantel results are keyed "<first>~<second>", e.g. "shape~geography".
    """

    gpa: GPAResult
    pca: PCAResult
    shape_anova: AnovaResult | None = None
    site_anova: AnovaResult | None = None
    size_anova: AnovaResult | None = None
    size_gradients: AnovaResult | None = None
    allometry: AnovaResult | None = None
    shape_disparity: DisparityResult | None = None
    size_disparity: DisparityResult | None = None
    mantel: dict[str, PermutationTestResult] = field(default_factory=dict)
    classification: ClassificationResult | None = None


def run_analysis(
    specimens: SpecimenSet,
    config: AnalysisConfig | None = None,
    genetic: DistanceMatrix | None = None,
) -> AnalysisReport:
    """Run every analysis the specimen metadata supports.

    Args:
        specimens: Validated specimen set
        config: Run settings; defaults to ``AnalysisConfig()``
        genetic: Optional genetic distance matrix keyed by specimen id

    Returns:
        AnalysisReport with the results of each step that ran
    """
    config = config or AnalysisConfig()
    tests = dict(permutations=config.permutations, seed=config.seed, workers=config.workers)

    gpa_result = generalized_procrustes(
        specimens,
        max_iterations=config.max_iterations,
        tolerance=config.tolerance,
        allow_reflection=config.allow_reflection,
    )
    report = AnalysisReport(gpa=gpa_result, pca=pca(gpa_result))

    if config.factors:
        predictors = {name: _metadata(specimens, name) for name in config.factors}
        report.shape_anova = procrustes_anova(gpa_result, predictors, **tests)

    if specimens.has_label(config.group_label):
        sites = specimens.labels(config.group_label)
        report.site_anova = procrustes_anova(gpa_result, {config.group_label: sites}, **tests)
        report.size_anova = procrustes_anova(
            gpa_result.centroid_sizes, {config.group_label: sites}, **tests
        )
        report.shape_disparity = morphological_disparity(
            gpa_result, sites, distance=config.disparity_distance, **tests
        )
        report.size_disparity = morphological_disparity(
            gpa_result.centroid_sizes,
            sites,
            distance=config.size_disparity_distance,
            **tests,
        )
    else:
        logger.info("No %r label; skipping site analyses", config.group_label)

    if config.gradients:
        covariates = {name: specimens.covariate(name) for name in config.gradients}
        report.size_gradients = procrustes_anova(
            gpa_result.centroid_sizes, covariates, **tests
        )

    report.allometry = allometry(gpa_result, **tests)

    shapes = shape_distance(gpa_result)
    geography = None
    if specimens.has_covariate(config.latitude) and specimens.has_covariate(config.longitude):
        geography = geo_distance(
            specimens.covariate(config.latitude),
            specimens.covariate(config.longitude),
            specimens.ids,
            method=config.geo_method,
        )
        report.mantel["shape~geography"] = mantel(shapes, geography, **tests)
    else:
        logger.info("No coordinates; skipping geographic Mantel tests")

    if genetic is not None:
        pairs = {"genetic~shape": shapes}
        if geography is not None:
            pairs["genetic~geography"] = geography
        for name in config.gradients:
            pairs[f"genetic~{name}"] = covariate_distance(
                specimens.covariate(name), specimens.ids
            )
        for key, other in pairs.items():
            first, second = reconcile(genetic, other)
            report.mantel[key] = mantel(first, second, **tests)

    if specimens.has_label(config.species_label):
        report.classification = classify(
            gpa_result,
            specimens.labels(config.species_label),
            validation=config.validation,
            folds=config.folds,
            test_size=config.test_size,
            seed=0 if config.seed is None else config.seed,
        )
    else:
        logger.info("No %r label; skipping classification", config.species_label)

    return report


def _metadata(specimens: SpecimenSet, name: str) -> list[object]:
    """Label or covariate values for a model factor."""
    if specimens.has_label(name):
        return list(specimens.labels(name))
    if specimens.has_covariate(name):
        return list(specimens.covariate(name))
    raise MissingDataError(f"No label or covariate named {name!r} on every specimen")
