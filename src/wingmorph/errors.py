"""
Exception taxonomy for wingmorph.

All errors describe invalid input rather than transient failures, so they
derive from ``ValueError`` and are never retried.
"""

from __future__ import annotations


class WingmorphError(Exception):
    """Base class for all wingmorph errors."""


class DimensionMismatchError(WingmorphError, ValueError):
    """Landmark count or dimensionality differs across specimens."""


class MissingDataError(WingmorphError, ValueError):
    """Incomplete coordinates or metadata reached the analysis core."""


class DegenerateShapeError(WingmorphError, ValueError):
    """A configuration has zero centroid size (all landmarks coincide)."""


class LabelMismatchError(WingmorphError, ValueError):
    """Identifier or label sets fail to align or intersect."""


class InsufficientDataError(WingmorphError, ValueError):
    """A fold, class or group lacks enough members to fit."""


class ConvergenceWarning(UserWarning):
    """GPA reached its iteration cap without meeting the tolerance."""
