"""Domain errors and failure typing."""

# Error code for failures that are not a PipelineError.
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class PipelineError(Exception):
    """Base class for collection failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class InvalidRegionError(PipelineError):
    """Raised when a drawn region cannot be turned into queries."""

    error_code = "INVALID_REGION"


class CollectionCancelledError(PipelineError):
    """Raised when a run is cancelled at a batch boundary."""

    error_code = "CANCELLED"


class ServiceError(PipelineError):
    """Raised for non-retryable external service failures."""

    error_code = "SERVICE_ERROR"


class ServiceUnavailableError(ServiceError):
    error_code = "SERVICE_UNAVAILABLE"


class RateLimitedError(ServiceError):
    error_code = "RATE_LIMITED"
