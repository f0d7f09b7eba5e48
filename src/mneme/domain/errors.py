"""
Error taxonomy shared by every layer.

The scheduler only ever raises ValidationError. Storage adapters translate
driver failures into StorageError; interfaces map each class to a status.
"""


class MnemeError(Exception):
    """Base class for all engine errors."""

    retryable = False


class ValidationError(MnemeError):
    """A rating, quality or identifier is missing or out of range."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(MnemeError):
    """A card, deck or session does not exist or is outside the requested scope."""


class ConflictError(MnemeError):
    """Out-of-order or duplicate submission; re-fetch session state and retry."""

    retryable = True


class StorageError(MnemeError):
    """Transient persistence failure."""

    retryable = True
