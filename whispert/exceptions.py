"""Custom Exceptions for the whisper-t application."""

from typing import Optional


class WhisperTError(Exception):
    """Base class for exceptions in this package."""

    retryable = False


class ConfigurationError(WhisperTError):
    """Exception raised for errors in configuration loading or validation."""
    pass


class FileSystemError(WhisperTError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass


class UnreadableMediaError(WhisperTError):
    """The source media cannot be opened, probed, or has no usable duration."""
    pass


class SegmentationError(WhisperTError):
    """Extraction of a single segment failed."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class AssemblyError(WhisperTError):
    """Segment results could not be assembled into a transcript."""
    pass


class CancelledError(WhisperTError):
    """The run was cancelled (fail-fast or caller abort) before every segment finished."""

    def __init__(self, message: str, results=None):
        super().__init__(message)
        # Results that completed before cancellation, keyed by segment index.
        self.results = dict(results or {})


class TranscriptionError(WhisperTError):
    """Base class for failures of a single call to the transcription service."""
    pass


class AuthenticationError(TranscriptionError):
    """Missing or rejected API credential."""
    pass


class TransportError(TranscriptionError):
    """Connection failure or timeout while talking to the service."""

    retryable = True


class ServiceError(TranscriptionError):
    """The service answered with a non-success HTTP status."""

    RETRYABLE_STATUS_CODES = (429,)

    def __init__(self, message: str, status_code: int, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status_code in self.RETRYABLE_STATUS_CODES or 500 <= self.status_code < 600


class DecodeError(TranscriptionError):
    """The response body is not the expected JSON document."""
    pass
