from __future__ import annotations


class IdentityError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(IdentityError):
    pass


class IntegrityError(ValidationError):
    """Cross-landlord ownership violation detected at write time."""


class ResourceNotFound(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class StoreUnavailable(IdentityError):
    retryable = True
