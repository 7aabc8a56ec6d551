"""Custom exceptions for track enrichment."""


class TrackEnrichmentError(Exception):
    """Base exception for track enrichment errors."""
    pass


class ConfigurationError(TrackEnrichmentError):
    """Raised when there's an error in configuration."""
    pass


class CatalogError(TrackEnrichmentError):
    """Raised when the local catalog cannot be read."""
    pass


class LookupFailedError(TrackEnrichmentError):
    """Raised when a remote lookup fails for a transient reason.

    Transient failures are never cached so that a later run retries them.
    """
    pass


class AnalysisError(TrackEnrichmentError):
    """Base class for failures of a single analysis job."""

    def __init__(self, message: str, file_path=None):
        super().__init__(message)
        self.file_path = file_path


class AnalyzerExitError(AnalysisError):
    """Raised when the analyzer exits with a code outside the accepted set."""

    def __init__(self, message: str, file_path=None, exit_code=None, stderr: str = ""):
        super().__init__(message, file_path)
        self.exit_code = exit_code
        self.stderr = stderr


class AnalysisTimeoutError(AnalysisError):
    """Raised when an analysis job exceeds its deadline."""
    pass


class MalformedOutputError(AnalysisError):
    """Raised when analyzer output is missing or cannot be parsed."""
    pass


class AnalyzerUnavailableError(TrackEnrichmentError):
    """Raised when no analyzer executable can be resolved."""
    pass


class OperationCancelledError(TrackEnrichmentError):
    """Raised when an operation stops because cancellation was requested."""
    pass
