"""
Group bookkeeping for per-site and per-class computations.

``group_indices`` builds an ordered mapping from group label to specimen
indices once, so group-wise statistics never re-filter the data.
``assign_groups`` attaches group labels (e.g. species identified by COI
barcoding) to specimen labels by exact identifier match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING

import numpy as np

from wingmorph.errors import LabelMismatchError, MissingDataError

if TYPE_CHECKING:
    from numpy.typing import NDArray

GroupIndex = dict[str, "NDArray[np.intp]"]

# Leading digit run of a specimen label: "474l_2" -> "474".
_NUMERIC_ID = re.compile(r"^(\d+)(?!\d)")


def group_indices(labels: Sequence[object]) -> GroupIndex:
    """Map each group label to the indices of its members.

    Groups are ordered by sorted label, matching factor-level ordering.

    Raises:
        MissingDataError: If a label is None or NaN
    """
    keys = []
    for i, label in enumerate(labels):
        if label is None or (isinstance(label, float) and np.isnan(label)):
            raise MissingDataError(f"Group label missing for specimen {i}")
        keys.append(str(label))
    levels, codes = np.unique(np.array(keys, dtype=object), return_inverse=True)
    return {str(level): np.flatnonzero(codes == j) for j, level in enumerate(levels)}


def group_codes(groups: GroupIndex, n: int) -> NDArray[np.intp]:
    """Integer group code per specimen, in the order of ``groups``."""
    codes = np.full(n, -1, dtype=np.intp)
    for code, members in enumerate(groups.values()):
        codes[members] = code
    return codes


def specimen_number(label: str) -> str | None:
    """Extract the numeric individual ID from a specimen label.

    Returns None if the label does not start with a digit.

    >>> specimen_number("474l_2")
    '474'
    >>> specimen_number("47411r")
    '47411'
    """
    match = _NUMERIC_ID.match(str(label).strip())
    return match.group(1) if match else None


def assign_groups(
    labels: Iterable[str],
    groups: Mapping[str, Iterable[str]],
    default: str,
) -> list[str]:
    """Assign a group to each specimen label by exact numeric ID.

    A label belongs to a group only if its full leading ID equals one of the
    group's IDs, so "474" never matches "47411".

    Args:
        labels: Specimen labels such as "474l" or "26r_1"
        groups: Group name -> individual IDs in that group
        default: Group for labels whose ID is listed nowhere

    Returns:
        One group name per label

    Raises:
        LabelMismatchError: If an ID is listed under more than one group
    """
    owner: dict[str, str] = {}
    for group, ids in groups.items():
        for raw in ids:
            key = str(raw).strip()
            if key in owner and owner[key] != group:
                raise LabelMismatchError(
                    f"ID {key!r} is listed under both {owner[key]!r} and {group!r}"
                )
            owner[key] = group

    assigned = []
    for label in labels:
        number = specimen_number(label)
        assigned.append(owner.get(number, default) if number is not None else default)
    return assigned


def threshold_category(
    values: Iterable[float],
    threshold: float,
    low: str,
    high: str,
) -> list[str]:
    """Split a numeric covariate into two categories (``<= threshold`` is low)."""
    values = np.asarray(list(values), dtype=float)
    if not np.all(np.isfinite(values)):
        raise MissingDataError("Cannot categorize missing covariate values")
    return [low if v <= threshold else high for v in values]
