"""
Maximum-entropy fire occurrence model.

The model estimates a Gibbs distribution q(x) ∝ exp(lambda . f(x)) over the
background sample whose feature expectations match the presence means within
per-feature regularization bounds (L1-regularized dual). Predictions use the
complementary log-log (cloglog) link.
"""

import logging
import warnings
from pathlib import Path
from typing import Optional

import joblib
import numpy as np
from scipy.optimize import minimize
from scipy.special import logsumexp
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import roc_auc_score

from .config import FeatureConfig, MaxentConfig
from .errors import DataSufficiencyError, ScoringError
from .features import MaxentFeatureTransformer, regularization_betas, select_feature_families

logger = logging.getLogger(__name__)

# Floor for the presence standard deviation used in per-feature betas
MIN_DEVIATION = 0.001

# KKT residual below which a stopped optimizer is still treated as converged
KKT_TOLERANCE = 1e-4


def cloglog(raw_score: np.ndarray) -> np.ndarray:
    """Complementary log-log link: p = 1 - exp(-exp(raw_score))."""
    with np.errstate(over="ignore"):
        return -np.expm1(-np.exp(raw_score))


class MaxentModel:
    """
    MaxEnt presence/background model.

    Presence rows of the training data define the empirical feature means;
    absence rows (plus the presence rows, if ``add_samples_to_background``)
    form the background sample the distribution is defined over.
    """

    def __init__(
        self,
        features: Optional[FeatureConfig] = None,
        auto_features: bool = True,
        config: Optional[MaxentConfig] = None,
    ):
        """
        Initialize the model.

        Args:
            features: Enabled feature families
            auto_features: Choose families and complexity from the presence count
            config: Optimizer and regularization settings
        """
        self.features = features or FeatureConfig()
        self.auto_features = auto_features
        self.config = config or MaxentConfig()
        self.is_trained = False

    def fit(self, X: np.ndarray, y: np.ndarray, feature_names: Optional[list[str]] = None) -> "MaxentModel":
        """
        Fit the model.

        Args:
            X: Predictor matrix (n_samples, n_predictors)
            y: Labels (1 for presence, 0 for absence/background)
            feature_names: Predictor names, used to match raster bands at scoring time

        Returns:
            self
        """
        y = np.asarray(y).astype(int).ravel()
        X = np.asarray(X)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if len(X) != len(y):
            raise DataSufficiencyError(f"X has {len(X)} rows but y has {len(y)} labels", stage="train")

        n_presence = int((y == 1).sum())
        n_absence = int((y == 0).sum())
        if n_presence == 0:
            raise DataSufficiencyError("No presence points to train on", stage="train")
        if n_absence == 0:
            raise DataSufficiencyError("No absence/background points to train on", stage="train")

        # Feature configuration errors surface before any optimization
        self.feature_families_ = select_feature_families(self.features, n_presence, self.auto_features)

        self.transformer_ = MaxentFeatureTransformer(
            feature_types=self.feature_families_,
            clamp=self.config.clamp,
            n_hinge_knots=self.config.n_hinge_knots,
            n_threshold_knots=self.config.n_threshold_knots,
        )
        self.transformer_.fit(X, feature_names=feature_names)
        self.feature_names_in_ = self.transformer_.predictor_names_

        presence = X[y == 1]
        background = X[y == 0]
        if self.config.add_samples_to_background:
            background = np.vstack([background, presence])

        F_presence = self.transformer_.transform(presence)
        F_background = self.transformer_.transform(background)

        family_betas = regularization_betas(self.feature_families_, n_presence)
        deviations = np.maximum(F_presence.std(axis=0), MIN_DEVIATION)
        family_scale = np.array([family_betas[f] for f in self.transformer_.feature_families_])
        self.family_betas_ = family_betas
        self.betas_ = self.config.beta_multiplier * family_scale * deviations / np.sqrt(n_presence)

        n_features = F_background.shape[1]
        logger.info(
            f"Fitting MaxEnt: {n_features} features ({', '.join(self.feature_families_)}), "
            f"{n_presence} presence, {len(background)} background"
        )

        self._optimize(F_presence.mean(axis=0), F_background)

        self.n_presence_ = n_presence
        self.n_background_ = len(background)
        self.is_trained = True

        # Diagnostics on the training data
        link_presence = self._link(F_presence)
        link_absence = self._link(self.transformer_.transform(X[y == 0]))
        self.training_gain_ = float(np.mean(F_presence @ self.lambdas_) - self.log_normalizer_ + np.log(self.n_background_))
        self.regularized_training_gain_ = float(self.training_gain_ - np.sum(self.betas_ * np.abs(self.lambdas_)))
        scores = np.concatenate([link_presence, link_absence])
        labels = np.concatenate([np.ones(len(link_presence)), np.zeros(len(link_absence))])
        self.training_auc_ = float(roc_auc_score(labels, scores))

        logger.info(
            f"  Training gain: {self.training_gain_:.3f}, AUC: {self.training_auc_:.3f}, "
            f"converged: {self.converged_} ({self.n_iter_} iterations)"
        )
        return self

    def _optimize(self, empirical_means: np.ndarray, F_background: np.ndarray) -> None:
        """
        Minimize the regularized dual

            log sum_i exp(lambda . f_i) - lambda . mu + sum_j beta_j |lambda_j|

        with L-BFGS-B over the split lambda = a - b, a, b >= 0.
        """
        betas = self.betas_
        n_features = F_background.shape[1]

        def objective(params):
            lambdas = params[:n_features] - params[n_features:]
            s = F_background @ lambdas
            lse = logsumexp(s)
            q = np.exp(s - lse)
            grad = F_background.T @ q - empirical_means
            value = lse - lambdas @ empirical_means + betas @ params[:n_features] + betas @ params[n_features:]
            return value, np.concatenate([grad + betas, -grad + betas])

        result = minimize(
            objective,
            np.zeros(2 * n_features),
            jac=True,
            method="L-BFGS-B",
            bounds=[(0.0, None)] * (2 * n_features),
            options={"maxiter": self.config.max_iterations, "ftol": self.config.tolerance},
        )

        self.lambdas_ = result.x[:n_features] - result.x[n_features:]
        self.n_iter_ = int(result.nit)
        self.optimizer_message_ = str(result.message)

        s = F_background @ self.lambdas_
        self.log_normalizer_ = float(logsumexp(s))
        q = np.exp(s - self.log_normalizer_)
        self.entropy_ = float(self.log_normalizer_ - q @ s)
        self.background_std_ = F_background.std(axis=0)

        gap = F_background.T @ q - empirical_means
        self.kkt_residual_ = float(np.max(self._kkt_violation(gap), initial=0.0))
        self.converged_ = bool(result.success or self.kkt_residual_ <= KKT_TOLERANCE)

        if not self.converged_:
            message = (
                f"MaxEnt optimizer did not converge after {self.n_iter_} iterations "
                f"(KKT residual {self.kkt_residual_:.2e}): {self.optimizer_message_}"
            )
            logger.warning(message)
            warnings.warn(message, ConvergenceWarning)

    def _kkt_violation(self, gap: np.ndarray) -> np.ndarray:
        """Per-feature violation of the regularized moment-matching conditions."""
        lambdas, betas = self.lambdas_, self.betas_
        return np.where(
            lambdas > 0, np.abs(gap + betas),
            np.where(lambdas < 0, np.abs(gap - betas), np.maximum(np.abs(gap) - betas, 0.0)),
        )

    def _link(self, F: np.ndarray) -> np.ndarray:
        return F @ self.lambdas_ - self.log_normalizer_ + self.entropy_

    def _check_trained(self):
        if not self.is_trained:
            raise ScoringError("Model has not been trained yet", stage="score")

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """
        Raw score on the cloglog scale: lambda . f(x) - log Z + H.

        Args:
            X: Predictor matrix with columns in ``feature_names_in_`` order

        Returns:
            Array of raw scores
        """
        self._check_trained()
        return self._link(self.transformer_.transform(X))

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict occurrence probabilities.

        Args:
            X: Predictor matrix with columns in ``feature_names_in_`` order

        Returns:
            Array of cloglog probabilities in [0, 1]
        """
        return cloglog(self.decision_function(X))

    def feature_importance(self) -> dict[str, float]:
        """
        Percent contribution of each predictor.

        Each feature contributes |lambda| times its background standard
        deviation; product features split their share between both predictors.
        """
        self._check_trained()
        weights = np.abs(self.lambdas_) * self.background_std_
        totals = dict.fromkeys(self.feature_names_in_, 0.0)
        for weight, sources in zip(weights, self.transformer_.feature_sources_):
            for j in sources:
                totals[self.feature_names_in_[j]] += weight / len(sources)

        total = sum(totals.values())
        if total <= 0:
            return {name: 0.0 for name in totals}
        return {name: 100.0 * value / total for name, value in totals.items()}

    def explain(self) -> dict:
        """Summary of the fitted model (JSON serializable)."""
        self._check_trained()
        features = []
        for name, family, lam, beta, std in zip(
            self.transformer_.feature_names_,
            self.transformer_.feature_families_,
            self.lambdas_,
            self.betas_,
            self.background_std_,
        ):
            features.append({
                "name": name,
                "family": family,
                "lambda": float(lam),
                "beta": float(beta),
                "importance": float(abs(lam) * std),
            })

        return {
            "model": "maxent",
            "predictors": list(self.feature_names_in_),
            "feature_families": list(self.feature_families_),
            "auto_features": self.auto_features,
            "n_presence": self.n_presence_,
            "n_background": self.n_background_,
            "beta_multiplier": self.config.beta_multiplier,
            "family_betas": self.family_betas_,
            "converged": self.converged_,
            "iterations": self.n_iter_,
            "optimizer_message": self.optimizer_message_,
            "kkt_residual": self.kkt_residual_,
            "entropy": self.entropy_,
            "training_gain": self.training_gain_,
            "regularized_training_gain": self.regularized_training_gain_,
            "training_auc": self.training_auc_,
            "n_nonzero_features": int(np.count_nonzero(self.lambdas_)),
            "contributions": self.feature_importance(),
            "features": features,
        }

    def save(self, path: str | Path) -> None:
        """Save the trained model to disk."""
        self._check_trained()
        joblib.dump(self, path)

    @classmethod
    def load(cls, path: str | Path) -> "MaxentModel":
        """Load a trained model from disk."""
        model = joblib.load(path)
        if not isinstance(model, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        return model
