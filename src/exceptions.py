"""Custom exceptions for the identity reconciliation service."""


class IdentityServiceError(Exception):
    """Base exception for identity service errors."""

    pass


class InvalidInputError(IdentityServiceError):
    """Neither an email nor a phone number was supplied."""

    pass


class StoreError(IdentityServiceError):
    """Error during contact store operations."""

    pass


class TransientStoreFailure(StoreError):
    """Store operation failed on contention, timeout or connectivity; safe to retry."""

    pass


class DataIntegrityWarning(UserWarning):
    """
    Non-fatal signal that stored links were broken, cyclic or too long.

    Raised into ``ResolutionResult.warnings`` rather than thrown, so the
    request still succeeds with the best-resolved primary.
    """

    def __init__(self, message: str, contact_id: int | None = None):
        super().__init__(message)
        self.contact_id = contact_id

    @property
    def message(self) -> str:
        return str(self.args[0])
