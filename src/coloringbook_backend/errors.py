"""
Exception types shared across the PDF generation pipeline.

Routes translate these into HTTP responses; the job manager records anything
raised during background processing as a failed job.
"""

from __future__ import annotations


class ColoringBookError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(ColoringBookError):
    """A submission was malformed and no job was created."""


class NotFoundError(ColoringBookError):
    """A job identifier does not name a known job."""


class JobStateError(ColoringBookError):
    """The requested operation is not allowed in the job's current state."""


class JobCancelledError(ColoringBookError):
    """Raised inside a worker once its job has been cancelled."""


class StorageError(ColoringBookError):
    """An object storage read or write failed."""

    def __init__(self, message: str, bucket: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.bucket = bucket
        self.key = key


class ResolutionError(ColoringBookError):
    """An image reference could not be turned into image bytes."""


class PublishError(ColoringBookError):
    """A finished document could not be written to storage."""
