"""
MaxEnt feature transforms.

Raw predictors are expanded into linear, quadratic, product, threshold and
hinge features. Scaling ranges and knots are learned from the training sample
so the same transform can be applied to a forecast raster.
"""

import logging
from typing import Optional

import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin

from .config import FEATURE_FAMILIES, FeatureConfig
from .errors import ConfigurationError, FeatureConstructionError, InputError

logger = logging.getLogger(__name__)

# Presence counts at which auto selection turns a family on
AUTO_QUADRATIC_MIN = 10
AUTO_HINGE_MIN = 15
AUTO_PRODUCT_THRESHOLD_MIN = 80

# Sample-size dependent regularization tables: (presence counts, betas)
BETA_LINEAR = ([10, 30, 100], [1.0, 0.2, 0.05])
BETA_LINEAR_QUADRATIC = ([0, 10, 17, 30, 100], [1.3, 0.8, 0.5, 0.25, 0.05])
BETA_LINEAR_QUADRATIC_PRODUCT = ([0, 10, 17, 30, 100], [2.6, 1.6, 0.9, 0.55, 0.05])
BETA_THRESHOLD = ([0, 100], [2.0, 1.0])
BETA_HINGE = ([0, 1], [0.5, 0.5])


def select_feature_families(
    features: FeatureConfig,
    n_presence: int,
    auto: bool,
) -> tuple[str, ...]:
    """
    Decide which feature families to build.

    Without auto selection exactly the enabled families are used. With auto
    selection the enabled families (all of them if none is enabled) are
    filtered by presence count: linear always, quadratic from 10 points,
    hinge from 15, product and threshold from 80.

    Args:
        features: Enabled families
        n_presence: Number of presence samples
        auto: Whether auto feature selection is on

    Returns:
        Family names in canonical order
    """
    enabled = features.enabled()

    if not auto:
        if not enabled:
            raise ConfigurationError(
                "No feature family enabled and auto feature selection is off",
                stage="train",
            )
        return enabled

    candidates = enabled or FEATURE_FAMILIES
    allowed = {"linear"}
    if n_presence >= AUTO_QUADRATIC_MIN:
        allowed.add("quadratic")
    if n_presence >= AUTO_HINGE_MIN:
        allowed.add("hinge")
    if n_presence >= AUTO_PRODUCT_THRESHOLD_MIN:
        allowed.update({"product", "threshold"})

    selected = tuple(name for name in candidates if name in allowed)
    if not selected:
        selected = ("linear",)
    logger.info(f"Auto feature selection ({n_presence} presence points): {', '.join(selected)}")
    return selected


def regularization_betas(families: tuple[str, ...], n_presence: int) -> dict[str, float]:
    """Per-family regularization parameter interpolated on presence count."""
    if "product" in families:
        table = BETA_LINEAR_QUADRATIC_PRODUCT
    elif "quadratic" in families:
        table = BETA_LINEAR_QUADRATIC
    else:
        table = BETA_LINEAR
    lqp = float(np.interp(n_presence, *table))

    betas = {}
    for family in families:
        if family == "threshold":
            betas[family] = float(np.interp(n_presence, *BETA_THRESHOLD))
        elif family == "hinge":
            betas[family] = float(np.interp(n_presence, *BETA_HINGE))
        else:
            betas[family] = lqp
    return betas


def _as_numeric(X, feature_names, families) -> np.ndarray:
    """Convert X to a float matrix, naming the first non-numeric column on failure."""
    X = np.asarray(X)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if X.ndim != 2:
        raise InputError(f"Expected a 2-D predictor matrix, got shape {X.shape}", stage="train")

    if np.issubdtype(X.dtype, np.number) or X.dtype == bool:
        return X.astype(np.float64)

    for j in range(X.shape[1]):
        try:
            X[:, j].astype(np.float64)
        except (TypeError, ValueError) as e:
            name = feature_names[j] if feature_names is not None else f"column {j}"
            raise FeatureConstructionError(
                f"Cannot build {', '.join(families)} features: predictor '{name}' is not numeric",
                stage="train",
                identifier=name,
            ) from e
    return X.astype(np.float64)


def _quantile_knots(values: np.ndarray, n_knots: int) -> np.ndarray:
    if n_knots <= 0:
        return np.zeros(0)
    probs = np.linspace(0, 1, n_knots + 2)[1:-1]
    return np.unique(np.quantile(values, probs))


class MaxentFeatureTransformer(BaseEstimator, TransformerMixin):
    """
    Expand raw predictors into MaxEnt features.

    Linear features are predictors min-max scaled to [0, 1] over the training
    sample. Quadratic features are squared scaled predictors, product features
    the pairwise products of scaled predictors. Threshold features are step
    functions and hinge features forward/reverse ramps, both at quantile knots
    of each predictor's training distribution.
    """

    def __init__(
        self,
        feature_types: tuple[str, ...] = ("linear", "quadratic", "product"),
        clamp: bool = True,
        n_hinge_knots: int = 10,
        n_threshold_knots: int = 10,
    ):
        self.feature_types = feature_types
        self.clamp = clamp
        self.n_hinge_knots = n_hinge_knots
        self.n_threshold_knots = n_threshold_knots

    def fit(self, X, y=None, feature_names: Optional[list[str]] = None):
        unknown = set(self.feature_types) - set(FEATURE_FAMILIES)
        if unknown:
            raise ConfigurationError(f"Unknown feature families: {sorted(unknown)}", stage="train")
        if not self.feature_types:
            raise ConfigurationError("No feature families to build", stage="train")

        X = _as_numeric(X, feature_names, self.feature_types)
        if len(X) == 0:
            raise InputError("Cannot fit features on an empty sample", stage="train")
        if not np.all(np.isfinite(X)):
            raise InputError("Predictor matrix contains missing values", stage="train")

        n_predictors = X.shape[1]
        self.predictor_names_ = tuple(feature_names) if feature_names is not None else tuple(
            f"x{j}" for j in range(n_predictors)
        )
        self.mins_ = X.min(axis=0)
        self.maxs_ = X.max(axis=0)
        ranges = self.maxs_ - self.mins_
        self.ranges_ = np.where(ranges > 0, ranges, 1.0)

        self.hinge_knots_ = []
        self.threshold_knots_ = []
        for j in range(n_predictors):
            knots = _quantile_knots(X[:, j], self.n_hinge_knots)
            self.hinge_knots_.append(knots)
            knots = _quantile_knots(X[:, j], self.n_threshold_knots)
            # A step at the minimum is constant on the training range
            self.threshold_knots_.append(knots[knots > self.mins_[j]])

        self._build_names()
        if not self.feature_names_:
            raise FeatureConstructionError(
                f"Feature families {list(self.feature_types)} produce no features "
                f"for predictors {list(self.predictor_names_)}",
                stage="train",
            )
        return self

    def _build_names(self):
        names, families, sources = [], [], []

        def add(name, family, source):
            names.append(name)
            families.append(family)
            sources.append(source)

        pn = self.predictor_names_
        p = len(pn)

        if "linear" in self.feature_types:
            for j in range(p):
                add(pn[j], "linear", (j,))
        if "quadratic" in self.feature_types:
            for j in range(p):
                add(f"{pn[j]}^2", "quadratic", (j,))
        if "product" in self.feature_types:
            for i in range(p):
                for j in range(i + 1, p):
                    add(f"{pn[i]}*{pn[j]}", "product", (i, j))
        if "threshold" in self.feature_types:
            for j in range(p):
                for k in self.threshold_knots_[j]:
                    add(f"{pn[j]}>={k:.6g}", "threshold", (j,))
        if "hinge" in self.feature_types:
            for j in range(p):
                for k in self.hinge_knots_[j]:
                    if k < self.maxs_[j]:
                        add(f"hinge({pn[j]}>{k:.6g})", "hinge", (j,))
                    if k > self.mins_[j]:
                        add(f"hinge({pn[j]}<{k:.6g})", "hinge", (j,))

        self.feature_names_ = names
        self.feature_families_ = families
        self.feature_sources_ = sources

    def transform(self, X) -> np.ndarray:
        X = _as_numeric(X, self.predictor_names_, self.feature_types)
        if X.shape[1] != len(self.predictor_names_):
            raise InputError(
                f"Expected {len(self.predictor_names_)} predictors, got {X.shape[1]}", stage="score"
            )
        if self.clamp:
            X = np.clip(X, self.mins_, self.maxs_)

        scaled = (X - self.mins_) / self.ranges_
        columns = []

        if "linear" in self.feature_types:
            columns.extend(scaled.T)
        if "quadratic" in self.feature_types:
            columns.extend((scaled ** 2).T)
        if "product" in self.feature_types:
            p = scaled.shape[1]
            for i in range(p):
                for j in range(i + 1, p):
                    columns.append(scaled[:, i] * scaled[:, j])
        if "threshold" in self.feature_types:
            for j, knots in enumerate(self.threshold_knots_):
                for k in knots:
                    columns.append((X[:, j] >= k).astype(np.float64))
        if "hinge" in self.feature_types:
            for j, knots in enumerate(self.hinge_knots_):
                lo, hi = self.mins_[j], self.maxs_[j]
                for k in knots:
                    if k < hi:
                        columns.append(np.maximum(0.0, (X[:, j] - k) / (hi - k)))
                    if k > lo:
                        columns.append(np.maximum(0.0, (k - X[:, j]) / (k - lo)))

        return np.column_stack(columns) if columns else np.zeros((len(X), 0))
