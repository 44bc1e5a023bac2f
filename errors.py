"""Exceptions raised by the thumbnail pipeline."""


class GalleryError(Exception):
    """Base class for NAS Gallery errors."""


class NotFound(GalleryError):
    """No record for the id, the record is deleted, or the file is gone."""


class CorruptSource(GalleryError):
    """The source image cannot be decoded into a usable thumbnail."""

    def __init__(self, reason: str, message: str = ""):
        reason = getattr(reason, "value", reason)
        super().__init__(message or reason)
        self.reason = reason


class TransientFailure(GalleryError):
    """Generation failed for a reason that may go away on retry."""
