"""
Tests for MaxEnt features, fitting and explanation.
"""

import json

import numpy as np
import pytest
from scipy.special import logsumexp
from sklearn.exceptions import ConvergenceWarning

import firecast.model
from firecast.config import FeatureConfig, MaxentConfig
from firecast.errors import ConfigurationError, DataSufficiencyError, FeatureConstructionError, ScoringError
from firecast.features import MaxentFeatureTransformer, regularization_betas, select_feature_families
from firecast.model import MaxentModel, cloglog

LINEAR_ONLY = FeatureConfig(linear=True, quadratic=False, product=False, threshold=False, hinge=False)
NO_FEATURES = FeatureConfig(linear=False, quadratic=False, product=False, threshold=False, hinge=False)


def test_cloglog_link():
    assert cloglog(np.array([0.0]))[0] == pytest.approx(1 - np.exp(-1))
    p = cloglog(np.array([-50.0, -1.0, 0.0, 1.0, 50.0, 1000.0]))
    assert np.all((p >= 0) & (p <= 1))
    assert np.all(np.diff(p) >= 0)
    assert p[-1] == 1.0


def test_no_families_without_auto_fails_before_optimizing(monkeypatch, synthetic_training_data):
    X, y = synthetic_training_data

    def fail(*args, **kwargs):
        raise AssertionError("optimizer should not run")

    monkeypatch.setattr(firecast.model, "minimize", fail)

    with pytest.raises(ConfigurationError):
        MaxentModel(features=NO_FEATURES, auto_features=False).fit(X, y)


def test_auto_selection_by_sample_size():
    everything = FeatureConfig(threshold=True)
    assert select_feature_families(everything, 5, auto=True) == ("linear",)
    assert select_feature_families(everything, 12, auto=True) == ("linear", "quadratic")
    assert select_feature_families(everything, 20, auto=True) == ("linear", "quadratic", "hinge")
    assert select_feature_families(everything, 100, auto=True) == (
        "linear", "quadratic", "product", "threshold", "hinge"
    )
    # Only enabled families are candidates
    assert select_feature_families(FeatureConfig(hinge=False), 100, auto=True) == (
        "linear", "quadratic", "product"
    )


def test_manual_selection_uses_exactly_the_enabled_families():
    families = FeatureConfig(linear=False, quadratic=True, product=False, threshold=True, hinge=False)
    assert select_feature_families(families, 3, auto=False) == ("quadratic", "threshold")


def test_regularization_depends_on_sample_size():
    assert regularization_betas(("linear",), 5) == {"linear": 1.0}
    betas = regularization_betas(("linear", "quadratic", "product"), 10)
    assert betas["product"] == pytest.approx(1.6)
    assert regularization_betas(("hinge", "threshold"), 50) == {"hinge": 0.5, "threshold": 1.5}


def test_feature_transformer_builds_each_family():
    X = np.array([[0.0, 10.0], [1.0, 20.0], [2.0, 30.0], [4.0, 40.0]])
    transformer = MaxentFeatureTransformer(
        feature_types=("linear", "quadratic", "product", "threshold", "hinge"),
        n_hinge_knots=2,
        n_threshold_knots=2,
    ).fit(X, feature_names=["a", "b"])

    F = transformer.transform(X)

    assert F.shape == (4, len(transformer.feature_names_))
    assert transformer.feature_names_[:5] == ["a", "b", "a^2", "b^2", "a*b"]
    assert F[:, 0].tolist() == pytest.approx([0.0, 0.25, 0.5, 1.0])
    assert F[:, 2].tolist() == pytest.approx([0.0, 0.0625, 0.25, 1.0])
    assert set(transformer.feature_families_) == {"linear", "quadratic", "product", "threshold", "hinge"}
    assert np.all(F >= 0) and np.all(F <= 1)


def test_clamping_limits_features_to_training_range():
    X = np.array([[0.0], [1.0]])
    clamped = MaxentFeatureTransformer(feature_types=("linear",)).fit(X)
    free = MaxentFeatureTransformer(feature_types=("linear",), clamp=False).fit(X)

    assert clamped.transform(np.array([[3.0]]))[0, 0] == 1.0
    assert free.transform(np.array([[3.0]]))[0, 0] == 3.0


def test_non_numeric_predictor_fails():
    X = np.array([[1.0, "forest"], [2.0, "pasture"], [3.0, "forest"]], dtype=object)
    y = np.array([1, 0, 0])
    with pytest.raises(FeatureConstructionError, match="landcover"):
        MaxentModel(features=FeatureConfig(quadratic=True), auto_features=False).fit(
            X, y, feature_names=["temp", "landcover"]
        )


def test_missing_label_class_fails(synthetic_training_data):
    X, y = synthetic_training_data
    with pytest.raises(DataSufficiencyError):
        MaxentModel().fit(X[y == 1], y[y == 1])
    with pytest.raises(DataSufficiencyError):
        MaxentModel().fit(X[y == 0], y[y == 0])


def test_fit_learns_the_presence_signal(synthetic_training_data):
    X, y = synthetic_training_data
    model = MaxentModel().fit(X, y, feature_names=["dryness", "noise"])

    assert model.converged_
    assert model.feature_names_in_ == ("dryness", "noise")

    high = model.predict_proba(np.array([[0.9, 0.5]]))[0]
    low = model.predict_proba(np.array([[0.1, 0.5]]))[0]
    assert high > low

    p = model.predict_proba(X)
    assert np.all((p >= 0) & (p <= 1))

    importance = model.feature_importance()
    assert importance["dryness"] > importance["noise"]
    assert sum(importance.values()) == pytest.approx(100.0)
    assert model.training_auc_ > 0.7


def test_expected_features_match_presence_means_within_betas(synthetic_training_data):
    X, y = synthetic_training_data
    model = MaxentModel(features=LINEAR_ONLY, auto_features=False, config=MaxentConfig(tolerance=1e-12)).fit(X, y)

    background = np.vstack([X[y == 0], X[y == 1]])
    F_background = model.transformer_.transform(background)
    F_presence = model.transformer_.transform(X[y == 1])

    s = F_background @ model.lambdas_
    q = np.exp(s - logsumexp(s))
    gap = F_background.T @ q - F_presence.mean(axis=0)

    assert np.all(np.abs(gap) <= model.betas_ + 1e-4)


def test_background_without_presence_samples(synthetic_training_data):
    X, y = synthetic_training_data
    model = MaxentModel(config=MaxentConfig(add_samples_to_background=False)).fit(X, y)
    assert model.n_background_ == int((y == 0).sum())


def test_non_convergence_is_reported(synthetic_training_data):
    X, y = synthetic_training_data
    model = MaxentModel(
        features=FeatureConfig(hinge=True, threshold=True),
        auto_features=False,
        config=MaxentConfig(max_iterations=1),
    )

    with pytest.warns(ConvergenceWarning):
        model.fit(X, y)

    assert model.converged_ is False
    assert model.explain()["converged"] is False
    # The best available model is still usable
    p = model.predict_proba(X)
    assert np.all((p >= 0) & (p <= 1))


def test_explain_is_json_serializable(synthetic_training_data):
    X, y = synthetic_training_data
    model = MaxentModel().fit(X, y, feature_names=["dryness", "noise"])

    explanation = model.explain()
    json.dumps(explanation)

    assert explanation["predictors"] == ["dryness", "noise"]
    assert set(explanation["contributions"]) == {"dryness", "noise"}
    assert len(explanation["features"]) == len(model.lambdas_)
    assert explanation["n_presence"] == 60


def test_unfitted_model_cannot_predict():
    with pytest.raises(ScoringError):
        MaxentModel().predict_proba(np.zeros((1, 2)))


def test_save_and_load(tmp_path, synthetic_training_data):
    X, y = synthetic_training_data
    model = MaxentModel(features=LINEAR_ONLY, auto_features=False).fit(X, y)

    path = tmp_path / "model.joblib"
    model.save(path)
    loaded = MaxentModel.load(path)

    assert np.array_equal(loaded.predict_proba(X), model.predict_proba(X))
