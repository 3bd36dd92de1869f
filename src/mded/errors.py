"""Exceptions raised by the document store and configuration store.

Every public operation either returns a value or raises a subclass of :class:`Error`.
"""


class Error(Exception):
    """Base class for all mded errors."""
    def __init__(self, message: str, cause: BaseException = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(Error):
    """Raised for empty, reserved, or traversal-bearing names and paths."""


class NotFoundError(Error):
    """Raised when a note, folder, or file that must exist does not."""


class ConflictError(Error):
    """Raised when the destination of a create/rename/move already exists."""


class StorageError(Error):
    """Raised when the underlying filesystem operation fails."""


class DecodeError(Error):
    """Raised when screenshot data or a configuration document cannot be decoded."""
