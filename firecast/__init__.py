"""
Fire Probability Forecasting with MaxEnt

Train a maximum-entropy presence/background model on one season's
environmental predictors and fire occurrences, and forecast fire probability
for the next season.
"""

from .config import FeatureConfig, MaxentConfig, RunConfig
from .errors import (
    ConfigurationError,
    DataSufficiencyError,
    FeatureConstructionError,
    FirecastError,
    InputError,
    ScoringError,
)
from .rasters import RasterGrid, RasterStack, load_raster_stack
from .occurrences import Point, load_point_collection, load_region
from .sampling import exclude_near_presence, sample_candidate_points
from .training import LabeledPoint, TrainingSet, assemble_training_set
from .features import MaxentFeatureTransformer
from .model import MaxentModel, cloglog
from .predict import ProbabilityRaster, score_raster_stack
from .pipeline import ForecastResult, run_forecast

__all__ = [
    "FeatureConfig",
    "MaxentConfig",
    "RunConfig",
    "ConfigurationError",
    "DataSufficiencyError",
    "FeatureConstructionError",
    "FirecastError",
    "InputError",
    "ScoringError",
    "RasterGrid",
    "RasterStack",
    "load_raster_stack",
    "Point",
    "load_point_collection",
    "load_region",
    "exclude_near_presence",
    "sample_candidate_points",
    "LabeledPoint",
    "TrainingSet",
    "assemble_training_set",
    "MaxentFeatureTransformer",
    "MaxentModel",
    "cloglog",
    "ProbabilityRaster",
    "score_raster_stack",
    "ForecastResult",
    "run_forecast",
]
