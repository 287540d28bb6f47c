"""
Error types shared across the face gallery package.
"""


class FaceGalleryError(Exception):
    """Base class for face gallery errors."""


class GalleryFormatError(FaceGalleryError):
    """Raised when a persisted gallery document cannot be parsed."""


class DimensionMismatchError(FaceGalleryError):
    """Raised when an embedding does not match the gallery's dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimension {actual} does not match gallery dimension {expected}")
        self.expected = expected
        self.actual = actual


class EmbeddingError(FaceGalleryError):
    """Raised by an embedder that could not produce a vector for a face."""


class EnrollmentStateError(FaceGalleryError):
    """Raised when an intent is not valid in the workflow's current state."""
