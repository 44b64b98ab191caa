"""Toronto house price modelling pipeline."""

from toronto_prices.config import PipelineConfig
from toronto_prices.errors import (
    DataValidationError,
    ImputationError,
    PipelineError,
    TrainingError,
)

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "PipelineError",
    "DataValidationError",
    "ImputationError",
    "TrainingError",
]
