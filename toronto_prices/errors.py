"""Exception types raised by the pipeline stages."""


class PipelineError(Exception):
    """Base class for failures the CLI reports without a traceback."""


class DataValidationError(PipelineError):
    """The listing file is malformed or holds values outside the allowed domain."""


class ImputationError(PipelineError):
    """No imputation strategy could complete the column."""


class TrainingError(PipelineError):
    """Every grid configuration of a model failed to fit."""
