"""Error types raised by the transcription pipeline.

Validation errors stop a job before any provider call. Transport errors come
from provider requests and know whether they may be retried. Batch failures
wrap the underlying cause with the batch position. Cancellation is its own
kind so callers can tell it apart from real failures.
"""

from __future__ import annotations

from typing import Optional


class PageScribeError(Exception):
    """Base class for all pipeline errors."""


class ImageValidationError(PageScribeError):
    """An input image (or the input set as a whole) was rejected."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigurationError(PageScribeError, ValueError):
    """Provider or pipeline configuration is missing or inconsistent."""


class TransportError(PageScribeError):
    """A provider request failed (network error, non-2xx status, error payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Client errors are final, except rate limiting."""
        if self.status_code is None:
            return True
        if self.status_code == 429:
            return True
        return not (400 <= self.status_code < 500)


class BatchFailedError(PageScribeError):
    """One batch failed and aborted the job."""

    def __init__(
        self,
        batch_number: int,
        total_batches: int,
        cause: BaseException,
    ) -> None:
        super().__init__(f"batch {batch_number}/{total_batches} failed: {cause}")
        self.batch_number = batch_number
        self.total_batches = total_batches
        self.cause = cause


class TranscriptionCancelledError(PageScribeError):
    """The job was cancelled by the caller."""

    def __init__(self, message: str = "transcription cancelled") -> None:
        super().__init__(message)


class RefinementError(PageScribeError):
    """The refinement pass could not produce usable pages."""
