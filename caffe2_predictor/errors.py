"""
PREDICTOR ERRORS

Exception hierarchy shared by every stage of the predictor lifecycle.

FAILURE SEMANTICS:
- Errors propagate to the caller (the agent host)
- No retries, no recovery, no fallback models
- Each stage raises its own subclass so callers can tell them apart
"""


class PredictorError(Exception):
    """Base class for all predictor plugin errors."""


class ManifestError(PredictorError, ValueError):
    """Model manifest is missing, malformed or unsupported."""


class FrameworkNotFoundError(PredictorError):
    """No registered framework satisfies a manifest's framework constraint."""


class DownloadError(PredictorError):
    """An artifact could not be fetched."""


class ChecksumMismatchError(DownloadError):
    """A downloaded artifact does not match its expected checksum."""

    def __init__(self, path: str, expected: str, actual: str):
        super().__init__(
            f"checksum mismatch for {path}: expected {expected}, got {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class PreprocessError(PredictorError):
    """Input could not be converted into a model tensor."""


class PredictionError(PredictorError):
    """Native session creation or execution failed."""
