"""Custom exception hierarchy for Pastebox."""

from __future__ import annotations


class PasteboxError(Exception):
    """Base exception for all Pastebox-specific errors."""

    def __init__(self, message: str, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(PasteboxError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(PasteboxError):
    """Base class for validation errors."""
    pass


class InvalidIdentifierError(ValidationError):
    """Raised when a paste identifier is not a valid UUID."""
    pass


class UnauthorizedError(PasteboxError):
    """Raised when credentials are missing, wrong, or lack ownership."""
    pass


class NotFoundError(PasteboxError):
    """Base class for lookups that found nothing."""
    pass


class PasteNotFoundError(NotFoundError):
    """Raised when a paste blob or an owned reference does not exist."""
    pass


class AlreadyExistsError(PasteboxError):
    """Base class for create operations that hit an existing entry."""
    pass


class BlobExistsError(AlreadyExistsError):
    """Raised when an exclusive blob create finds the identifier taken."""
    pass


class UserAlreadyExistsError(AlreadyExistsError):
    """Raised when registering a username that is already registered."""
    pass


class CorruptStateError(PasteboxError):
    """Raised when the registry snapshot cannot be read."""
    pass


class StorageError(PasteboxError):
    """Raised when storage operations fail."""
    pass
