"""Error taxonomy shared by the classification, merge, queue and sync layers."""

from __future__ import annotations


class RolodexError(Exception):
    """Base error for all rolodex failures."""


class ValidationError(RolodexError):
    """Malformed input rejected locally; never retried."""


class InvalidTransitionError(ValidationError):
    """A state transition was requested from a state that does not allow it."""

    def __init__(self, *, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition {entity} from '{current}' to '{target}'")


class NotFoundError(RolodexError):
    """A contact, queue item or account does not exist for the caller."""


class ConflictError(RolodexError):
    """A unique-key or lease conflict that the caller could not resolve."""


class SyncInProgressError(ConflictError):
    """Another sync currently holds the lease for the (owner, account) pair."""

    def __init__(self, owner_id: str, account_email: str) -> None:
        self.owner_id = owner_id
        self.account_email = account_email
        super().__init__(f"A contacts sync is already running for {owner_id}/{account_email}")


class SyncLeaseLostError(ConflictError):
    """The run's lease was taken over or released; its write was dropped."""

    def __init__(self, owner_id: str, account_email: str, *, current: str) -> None:
        self.owner_id = owner_id
        self.account_email = account_email
        self.current = current
        super().__init__(
            f"Sync lease for {owner_id}/{account_email} is no longer held (state '{current}')"
        )


class ExternalServiceError(RolodexError):
    """The language model or directory provider failed."""


class RetryableServiceError(ExternalServiceError):
    """Transient provider failure; a later attempt may succeed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CursorInvalidatedError(ExternalServiceError):
    """The provider declared the incremental sync cursor stale or expired."""


class CredentialUnavailableError(ExternalServiceError):
    """No usable access credential exists for the (owner, account) pair."""


class PersistenceError(RolodexError):
    """Storage layer failure; the whole operation may be retried."""


__all__ = [
    "ConflictError",
    "CredentialUnavailableError",
    "CursorInvalidatedError",
    "ExternalServiceError",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
    "RetryableServiceError",
    "RolodexError",
    "SyncInProgressError",
    "SyncLeaseLostError",
    "ValidationError",
]
