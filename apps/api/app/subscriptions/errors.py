from __future__ import annotations


class SubscriptionError(Exception):
    """Base error for subscription operations."""

    code = "subscription_error"

    def __init__(self, message: str, *, details: object = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(SubscriptionError):
    """Raised when client input is malformed or breaks a field rule."""

    code = "validation_error"


class NotFoundError(SubscriptionError):
    """Raised when the referenced subscription does not exist."""

    code = "not_found"


class OverlapError(SubscriptionError):
    """Raised when a period collides with another subscription of the same user and service."""

    code = "subscription_overlap"


class StorageError(SubscriptionError):
    code = "storage_error"
