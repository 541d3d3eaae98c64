"""
wingmorph - geometric morphometrics of insect wings.

Generalized Procrustes Analysis (GPA) of 2D or 3D landmark data, with
permutation-based Procrustes ANOVA, morphological disparity and Mantel
tests, and cross-validated linear discriminant classification.

Example usage:
    >>> import wingmorph as wm
    >>>
    >>> # Specimens come from an ingestion step
    >>> specimens = wm.SpecimenSet(
    ...     wm.Specimen(id=row.id, landmarks=row.coords, labels={"site": row.site})
    ...     for row in rows
    ... )
    >>>
    >>> # Perform GPA
    >>> result = wm.generalized_procrustes(specimens)
    >>>
    >>> # Does shape differ between sites?
    >>> anova = wm.procrustes_anova(result, {"site": specimens.labels("site")}, seed=1)
    >>> anova.table()
    >>>
    >>> # Is shape distance correlated with genetic distance?
    >>> genetic, shape = wm.reconcile(genetic, wm.shape_distance(result))
    >>> wm.mantel(genetic, shape, permutations=999, seed=1).p_value
"""

from wingmorph.anova import (
    AnovaResult,
    AnovaTerm,
    allometry,
    procrustes_anova,
)
from wingmorph.config import AnalysisConfig
from wingmorph.disparity import DisparityResult, morphological_disparity
from wingmorph.distance import (
    DistanceMatrix,
    covariate_distance,
    geo_distance,
    reconcile,
    shape_distance,
)
from wingmorph.errors import (
    ConvergenceWarning,
    DegenerateShapeError,
    DimensionMismatchError,
    InsufficientDataError,
    LabelMismatchError,
    MissingDataError,
    WingmorphError,
)
from wingmorph.gpa import (
    AlignedShape,
    GPAResult,
    align,
    center,
    centroid_size,
    flatten,
    generalized_procrustes,
    mean_shape,
    procrustes_distance,
    scale,
)
from wingmorph.grouping import assign_groups, group_indices, threshold_category
from wingmorph.lda import ClassificationResult, classify
from wingmorph.logging_config import setup_logging
from wingmorph.mantel import mantel
from wingmorph.pca import (
    PCAResult,
    pca,
    project_to_pc_space,
    warp_along_pc,
)
from wingmorph.permutation import PermutationTestResult, permutation_test
from wingmorph.pipeline import AnalysisReport, run_analysis
from wingmorph.specimens import Specimen, SpecimenSet

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Data model
    "Specimen",
    "SpecimenSet",
    # GPA functions
    "AlignedShape",
    "GPAResult",
    "generalized_procrustes",
    "center",
    "scale",
    "align",
    "mean_shape",
    "centroid_size",
    "procrustes_distance",
    "flatten",
    # PCA functions
    "PCAResult",
    "pca",
    "warp_along_pc",
    "project_to_pc_space",
    # Distances
    "DistanceMatrix",
    "shape_distance",
    "geo_distance",
    "covariate_distance",
    "reconcile",
    # Permutation tests
    "PermutationTestResult",
    "permutation_test",
    "AnovaResult",
    "AnovaTerm",
    "procrustes_anova",
    "allometry",
    "DisparityResult",
    "morphological_disparity",
    "mantel",
    # Classification
    "ClassificationResult",
    "classify",
    # Grouping
    "group_indices",
    "assign_groups",
    "threshold_category",
    # Pipeline and configuration
    "AnalysisConfig",
    "AnalysisReport",
    "run_analysis",
    "setup_logging",
    # Errors
    "WingmorphError",
    "DimensionMismatchError",
    "MissingDataError",
    "DegenerateShapeError",
    "LabelMismatchError",
    "InsufficientDataError",
    "ConvergenceWarning",
]
