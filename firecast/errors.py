"""
Error types raised by the forecasting pipeline.
"""

from typing import Optional


class FirecastError(Exception):
    """Base class for pipeline errors."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        identifier: Optional[str] = None,
    ):
        self.stage = stage
        self.identifier = identifier
        prefix = f"[{stage}] " if stage else ""
        super().__init__(f"{prefix}{message}")


class InputError(FirecastError, ValueError):
    """Missing or inconsistent input rasters, points or bands."""


class ConfigurationError(InputError):
    """Invalid run or feature configuration."""


class FeatureConstructionError(ConfigurationError):
    """A configured feature family cannot be built from the predictors."""


class DataSufficiencyError(FirecastError, ValueError):
    """Not enough presence or absence data to train."""


class ScoringError(FirecastError, RuntimeError):
    """A fitted model cannot be applied to the given data."""
