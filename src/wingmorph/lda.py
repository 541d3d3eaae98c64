"""
Cross-validated linear discriminant classification of aligned shapes.

Used to check whether groups identified independently (e.g. species from
COI barcoding) are also separable by shape alone.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from sklearn.discriminant_analysis import LinearDiscriminantAnalysis
from sklearn.model_selection import LeaveOneOut, StratifiedKFold, train_test_split

from wingmorph.errors import (
    InsufficientDataError,
    LabelMismatchError,
    MissingDataError,
)
from wingmorph.gpa import GPAResult, as_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

VALIDATIONS = ("loo", "kfold")


@dataclass(frozen=True, eq=False)
class ClassificationResult:
    """Result of a cross-validated discriminant analysis.

    Attributes:
        confusion: Counts with rows = predicted class, columns = true class
        recall: Per-class rate, diagonal / row sum of ``confusion``
        projection: Held-out specimens of the visualization split, indexed
            by specimen id, with discriminant scores (LD1, and LD2 when
            there are more than two classes) and predicted/true classes; empty
            when the split leaves a class with fewer than 2 training members
        accuracy: Overall proportion of correct out-of-fold predictions
        validation: Cross-validation scheme used
    """

    confusion: pd.DataFrame
    recall: pd.Series
    projection: pd.DataFrame
    accuracy: float
    validation: str


def classify(
    aligned: GPAResult | NDArray[np.floating],
    labels: Sequence[object],
    validation: str = "loo",
    folds: int = 5,
    test_size: float = 0.2,
    seed: int = 0,
) -> ClassificationResult:
    """Cross-validate a linear discriminant classifier on shape.

    Args:
        aligned: GPAResult or aligned coordinates (n_landmarks, n_dims, n_specimens)
        labels: Class label per specimen
        validation: "loo" for leave-one-out or "kfold" for stratified k-fold
        folds: Number of folds when ``validation="kfold"``
        test_size: Held-out proportion of the visualization split
        seed: Seed for fold shuffling and the visualization split

    Returns:
        ClassificationResult with confusion matrix, recall and projection

    Raises:
        LabelMismatchError: If the number of labels differs from the specimens
        MissingDataError: If a label is missing
        InsufficientDataError: If fewer than two classes are present, or a
            class has fewer than 2 training members in some fold
    """
    if validation not in VALIDATIONS:
        raise ValueError(f"validation must be one of {VALIDATIONS}, got {validation!r}")
    if not 0 < test_size < 1:
        raise ValueError("test_size must be between 0 and 1")

    x = as_matrix(aligned)
    n = x.shape[0]
    if len(labels) != n:
        raise LabelMismatchError(f"Got {len(labels)} labels for {n} specimens")
    for i, label in enumerate(labels):
        if label is None or (isinstance(label, float) and np.isnan(label)):
            raise MissingDataError(f"Class label missing for specimen {i}")
    y = np.array([str(label) for label in labels], dtype=object)
    classes = sorted(set(y))
    if len(classes) < 2:
        raise InsufficientDataError(
            f"Discriminant analysis needs at least 2 classes, got {classes}"
        )
    ids = list(aligned.ids) if isinstance(aligned, GPAResult) else [str(i) for i in range(n)]

    if validation == "loo":
        splitter = LeaveOneOut()
        description = "leave-one-out"
    else:
        if folds < 2:
            raise ValueError("folds must be at least 2")
        splitter = StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
        description = f"stratified {folds}-fold"

    predicted = np.empty(n, dtype=object)
    for train, test in splitter.split(x, y):
        _check_training_classes(y[train], classes)
        model = LinearDiscriminantAnalysis().fit(x[train], y[train])
        predicted[test] = model.predict(x[test])

    position = {name: i for i, name in enumerate(classes)}
    counts = np.zeros((len(classes), len(classes)), dtype=int)
    for guess, truth in zip(predicted, y):
        counts[position[guess], position[truth]] += 1
    confusion = pd.DataFrame(
        counts,
        index=pd.Index(classes, name="predicted"),
        columns=pd.Index(classes, name="true"),
    )
    row_sums = counts.sum(axis=1)
    diagonal = np.diag(counts)
    recall = pd.Series(
        np.divide(diagonal, row_sums, out=np.zeros(len(classes)), where=row_sums > 0),
        index=classes,
        name="recall",
    )
    accuracy = float(np.mean(predicted == y))

    projection = _projection(x, y, ids, classes, test_size, seed)

    logger.info(
        "LDA (%s) on %d specimens, %d classes: accuracy %.3f",
        description,
        n,
        len(classes),
        accuracy,
    )
    return ClassificationResult(
        confusion=confusion,
        recall=recall,
        projection=projection,
        accuracy=accuracy,
        validation=description,
    )


def _check_training_classes(y_train: NDArray[np.object_], classes: list[str]) -> None:
    counts = Counter(y_train)
    for name in classes:
        if counts.get(name, 0) < 2:
            raise InsufficientDataError(
                f"Class {name!r} has {counts.get(name, 0)} training member(s) "
                "in a fold; at least 2 are needed"
            )


def _projection(
    x: NDArray[np.floating],
    y: NDArray[np.object_],
    ids: list[str],
    classes: list[str],
    test_size: float,
    seed: int,
) -> pd.DataFrame:
    """Fit on a train split and score the held-out specimens.

    The split is stratified when every class can appear on both sides of
    it, and plain otherwise. If the training part still lacks 2 members of
    some class, the projection is empty.
    """
    n_axes = min(len(classes) - 1, 2)
    columns = [f"LD{j + 1}" for j in range(n_axes)]
    counts = Counter(y)
    n_test = int(np.ceil(test_size * len(y)))
    stratified = (
        min(counts.values()) >= 2
        and n_test >= len(classes)
        and len(y) - n_test >= len(classes)
    )
    if not stratified:
        logger.info(
            "Classes too small for a stratified %.0f%% test split; using a plain split",
            100 * test_size,
        )
    train, test = train_test_split(
        np.arange(len(y)),
        test_size=test_size,
        random_state=seed,
        stratify=y if stratified else None,
    )

    train_counts = Counter(y[train])
    short = [name for name in classes if train_counts.get(name, 0) < 2]
    if short:
        logger.warning(
            "Class %r has fewer than 2 members in the projection training split; "
            "projection left empty",
            short[0],
        )
        return pd.DataFrame(
            columns=columns + ["predicted", "true"],
            index=pd.Index([], name="specimen"),
        )

    model = LinearDiscriminantAnalysis().fit(x[train], y[train])
    scores = model.transform(x[test])[:, :n_axes]
    frame = pd.DataFrame(
        scores,
        index=pd.Index([ids[i] for i in test], name="specimen"),
        columns=columns[: scores.shape[1]],
    )
    frame["predicted"] = model.predict(x[test])
    frame["true"] = y[test]
    return frame
