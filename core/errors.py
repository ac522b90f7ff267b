# core/errors.py
"""Exception types surfaced by the core.

Every error raised across the service boundary derives from ``GlimpseError``
so the command handler can turn it into a single human-readable message.
Directory enumeration and copy failures stay plain ``OSError``.
"""


class GlimpseError(Exception):
    """Base class for all domain errors."""


class ImageProcessingError(GlimpseError):
    """A standard-format image could not be decoded or encoded."""

    def __str__(self):
        return f"Image processing error: {super().__str__()}"


class RawProcessingError(GlimpseError):
    """A camera RAW file could not be decoded or run through the pipeline."""

    def __str__(self):
        return f"RAW processing error: {super().__str__()}"


class ThumbnailGenerationError(GlimpseError):
    """Generic per-file failure while producing a derived asset."""


class ExifError(GlimpseError):
    def __str__(self):
        return f"EXIF error: {super().__str__()}"


class DatabaseError(GlimpseError):
    def __str__(self):
        return f"Database error: {super().__str__()}"


class NoActiveSessionError(GlimpseError):
    def __init__(self, message: str = "No session active"):
        super().__init__(message)


class SessionNotFoundError(GlimpseError):
    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        super().__init__("Session not found")


class NotFoundError(GlimpseError):
    """A requested derived asset does not exist."""


class InvalidPathError(GlimpseError):
    def __str__(self):
        return f"Invalid path: {super().__str__()}"
