"""
Run configuration for a fire forecast.
"""

import json
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Optional, Union

from .errors import ConfigurationError


# Predefined regions (min_lon, min_lat, max_lon, max_lat)
REGIONS = {
    "colombian_amazon": {
        "bbox": (-77.75, -4.25, -66.75, 6.25),
        "description": "Colombian Amazon, 0.25 degree ERA5 grid envelope",
    },
}

# Defaults of the original training run
DEFAULT_SAMPLE_COUNT = 500
DEFAULT_SAMPLE_SEED = 7
DEFAULT_EXCLUSION_DISTANCE = 25000.0
DEFAULT_PREDICTORS = ("PR", "SOIL1", "Protected", "T2M", "GLAD", "VPD")

MISSING_DATA_POLICIES = ("drop", "flag")

FEATURE_FAMILIES = ("linear", "quadratic", "product", "threshold", "hinge")

# camelCase keys of the documented configuration surface
_CAMEL_KEYS = {
    "trainingEpochStack": "training_stack",
    "forecastEpochStack": "forecast_stack",
    "presencePoints": "presence_points",
    "sampleCount": "sample_count",
    "sampleSeed": "sample_seed",
    "exclusionDistanceMeters": "exclusion_distance_meters",
    "predictorBandNames": "predictor_bands",
    "featureFamilies": "features",
    "autoFeatureSelection": "auto_feature_selection",
    "missingDataPolicy": "missing_data_policy",
    "presenceProperty": "presence_property",
    "outputDir": "output_dir",
}

StackSource = Union[str, Path, dict]
Region = Union[str, tuple, list, dict]


@dataclass(frozen=True)
class FeatureConfig:
    """Which MaxEnt feature families are enabled."""

    linear: bool = True
    quadratic: bool = True
    product: bool = True
    threshold: bool = False
    hinge: bool = True

    def enabled(self) -> tuple[str, ...]:
        return tuple(name for name in FEATURE_FAMILIES if getattr(self, name))

    @classmethod
    def from_families(cls, families) -> "FeatureConfig":
        """Build from a list of family names or a {name: bool} mapping."""
        if isinstance(families, dict):
            unknown = set(families) - set(FEATURE_FAMILIES)
            values = {name: bool(families.get(name, False)) for name in FEATURE_FAMILIES}
        else:
            unknown = set(families) - set(FEATURE_FAMILIES)
            values = {name: name in families for name in FEATURE_FAMILIES}
        if unknown:
            raise ConfigurationError(
                f"Unknown feature families: {sorted(unknown)}. Choose from {list(FEATURE_FAMILIES)}",
                stage="config",
            )
        return cls(**values)


@dataclass(frozen=True)
class MaxentConfig:
    """Optimizer and regularization settings for the MaxEnt model."""

    beta_multiplier: float = 1.0
    max_iterations: int = 500
    tolerance: float = 1e-7
    clamp: bool = True
    add_samples_to_background: bool = True
    n_hinge_knots: int = 10
    n_threshold_knots: int = 10


@dataclass(frozen=True)
class RunConfig:
    """
    Configuration of a single training and forecast run.

    Stack sources map a band name to a raster path, or to
    ``{"path": ..., "band": k}`` to select band ``k`` of a multi-band file.
    """

    region: Region
    training_stack: dict[str, StackSource]
    forecast_stack: dict[str, StackSource]
    presence_points: str
    sample_count: int = DEFAULT_SAMPLE_COUNT
    sample_seed: int = DEFAULT_SAMPLE_SEED
    exclusion_distance_meters: float = DEFAULT_EXCLUSION_DISTANCE
    predictor_bands: tuple[str, ...] = DEFAULT_PREDICTORS
    features: FeatureConfig = field(default_factory=FeatureConfig)
    auto_feature_selection: bool = True
    missing_data_policy: str = "drop"
    presence_property: str = "presence"
    maxent: MaxentConfig = field(default_factory=MaxentConfig)
    output_dir: Optional[str] = None

    def __post_init__(self):
        if self.sample_count <= 0:
            raise ConfigurationError(
                f"sample_count must be positive, got {self.sample_count}", stage="config"
            )
        if self.exclusion_distance_meters < 0:
            raise ConfigurationError(
                f"exclusion_distance_meters must be >= 0, got {self.exclusion_distance_meters}",
                stage="config",
            )
        if self.missing_data_policy not in MISSING_DATA_POLICIES:
            raise ConfigurationError(
                f"Unknown missing data policy: {self.missing_data_policy}. "
                f"Choose from {list(MISSING_DATA_POLICIES)}",
                stage="config",
            )
        if not self.predictor_bands:
            raise ConfigurationError("At least one predictor band is required", stage="config")
        if not self.auto_feature_selection and not self.features.enabled():
            raise ConfigurationError(
                "No feature family enabled and auto feature selection is off",
                stage="config",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunConfig":
        """Build a config from a plain dict (snake_case or camelCase keys)."""
        data = {_CAMEL_KEYS.get(key, key): value for key, value in data.items()}

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}", stage="config")

        for required in ("region", "training_stack", "forecast_stack", "presence_points"):
            if required not in data:
                raise ConfigurationError(f"Missing required key: {required}", stage="config")

        if "features" in data and not isinstance(data["features"], FeatureConfig):
            data["features"] = FeatureConfig.from_families(data["features"])
        if "maxent" in data and isinstance(data["maxent"], dict):
            unknown = set(data["maxent"]) - {f.name for f in fields(MaxentConfig)}
            if unknown:
                raise ConfigurationError(f"Unknown maxent keys: {sorted(unknown)}", stage="config")
            data["maxent"] = MaxentConfig(**data["maxent"])
        if "predictor_bands" in data:
            data["predictor_bands"] = tuple(data["predictor_bands"])
        if isinstance(data["region"], list):
            data["region"] = tuple(data["region"])

        return cls(**data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "RunConfig":
        """Load a config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", stage="config", identifier=str(path))
        with open(path) as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
