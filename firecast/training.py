"""
Training set assembly.

Presence and surviving absence points are labelled, merged, and populated
with predictor values sampled from the training-epoch raster stack.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import DataSufficiencyError, InputError
from .occurrences import Point
from .rasters import RasterStack

logger = logging.getLogger(__name__)

PRESENCE = 1
ABSENCE = 0


@dataclass(frozen=True)
class LabeledPoint:
    """A training location with its label and sampled predictor values."""

    point: Point
    label: int
    values: Optional[dict[str, float]]

    @property
    def valid(self) -> bool:
        return self.values is not None


@dataclass(frozen=True)
class TrainingSet:
    """
    Labelled points plus the design matrix built from the valid ones.

    Attributes:
        points: Every labelled point. Under the "flag" policy this includes
            points with missing values (``valid`` is False).
        X: Predictor matrix (n_valid, n_bands) in ``band_names`` order
        y: Labels (1 presence, 0 absence) for the rows of X
        band_names: Predictor names
    """

    points: tuple[LabeledPoint, ...]
    X: np.ndarray
    y: np.ndarray
    band_names: tuple[str, ...]

    @property
    def n_presence(self) -> int:
        return int((self.y == PRESENCE).sum())

    @property
    def n_absence(self) -> int:
        return int((self.y == ABSENCE).sum())

    @property
    def n_flagged(self) -> int:
        return sum(1 for p in self.points if not p.valid)

    def validate(self) -> None:
        """Raise DataSufficiencyError unless both labels are present."""
        if self.n_presence == 0:
            raise DataSufficiencyError(
                "Training set has no presence points with predictor values", stage="assemble"
            )
        if self.n_absence == 0:
            raise DataSufficiencyError(
                "Training set has no absence points with predictor values", stage="assemble"
            )

    def presence_matrix(self) -> np.ndarray:
        return self.X[self.y == PRESENCE]

    def absence_matrix(self) -> np.ndarray:
        return self.X[self.y == ABSENCE]


def label_points(points: list[Point], label: int, property_name: str = "presence") -> list[Point]:
    """Return copies of the points with ``property_name`` set to ``label``."""
    return [p.with_attributes(**{property_name: label}) for p in points]


def assemble_training_set(
    presence_points: list[Point],
    absence_points: list[Point],
    stack: RasterStack,
    band_names: Optional[list[str]] = None,
    missing_policy: str = "drop",
    property_name: str = "presence",
) -> TrainingSet:
    """
    Label, merge and sample presence and absence points.

    Points outside the stack or on a no-data pixel in any predictor band never
    receive substitute values. With ``missing_policy="drop"`` they are left out
    of the training set; with ``"flag"`` they are kept in ``points`` with
    ``values=None`` and left out of X and y.

    Args:
        presence_points: Observed fire locations
        absence_points: Candidate points that survived the exclusion join
        stack: Training-epoch predictor stack
        band_names: Predictors to sample (default: every band of the stack)
        missing_policy: "drop" or "flag"
        property_name: Attribute name for the label

    Returns:
        TrainingSet
    """
    if missing_policy not in ("drop", "flag"):
        raise InputError(f"Unknown missing data policy: {missing_policy}", stage="assemble")

    band_names = tuple(band_names or stack.band_names)
    stack = stack.select(band_names, stage="assemble")

    merged = (
        label_points(presence_points, PRESENCE, property_name)
        + label_points(absence_points, ABSENCE, property_name)
    )
    labels = np.array([PRESENCE] * len(presence_points) + [ABSENCE] * len(absence_points), dtype=int)

    logger.info(f"Sampling predictors for {len(merged)} training points...")
    values, valid_mask = stack.sample_at_points([p.coords for p in merged])

    labelled = []
    for point, label, row, valid in zip(merged, labels, values, valid_mask):
        if valid:
            sampled = {name: float(v) for name, v in zip(band_names, row)}
            labelled.append(LabeledPoint(point.with_attributes(**sampled), int(label), sampled))
        elif missing_policy == "flag":
            labelled.append(LabeledPoint(point, int(label), None))

    n_missing = int((~valid_mask).sum())
    if n_missing > 0:
        action = "dropped" if missing_policy == "drop" else "flagged"
        logger.warning(f"{n_missing} points outside raster coverage or on no-data pixels ({action})")

    training_set = TrainingSet(
        points=tuple(labelled),
        X=values[valid_mask],
        y=labels[valid_mask],
        band_names=band_names,
    )
    logger.info(
        f"Valid training samples: {len(training_set.X)} "
        f"(presence: {training_set.n_presence}, absence: {training_set.n_absence})"
    )
    return training_set
