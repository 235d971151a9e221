"""Error taxonomy shared by the catalog, order and webhook layers.

Every error carries an ErrorKind so the HTTP layer can pick a status code
without inspecting messages. Messages are safe to return to callers;
storage driver details are logged, never attached.
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "ConflictError",
    "ErrorKind",
    "InputValidationError",
    "NotFoundError",
    "ProcessingError",
    "StorefrontError",
]


class ErrorKind(Enum):
    """Coarse error classification."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    AUTHENTICATION = "authentication"
    PROCESSING = "processing"


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    kind: ErrorKind = ErrorKind.PROCESSING

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(StorefrontError):
    """Missing or malformed input. No state was changed."""

    kind = ErrorKind.VALIDATION


class NotFoundError(StorefrontError):
    """A referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class ConflictError(StorefrontError):
    """A uniqueness constraint rejected a write."""

    kind = ErrorKind.CONFLICT

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} already exists: {key}")
        self.entity = entity
        self.key = key


class AuthenticationError(StorefrontError):
    """Bad or missing credentials (webhook signature, provider API key)."""

    kind = ErrorKind.AUTHENTICATION


class ProcessingError(StorefrontError):
    """Unrecoverable failure while processing an event or request."""

    kind = ErrorKind.PROCESSING


class ConfigurationError(StorefrontError):
    """Required configuration is missing or invalid."""

    kind = ErrorKind.PROCESSING
