"""
Typed error taxonomy for identity reconciliation.

Every failure the engine reports carries an ErrorKind. Callers (the HTTP
layer included) branch on the exception type or its kind, never on the
message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of error kinds surfaced by the engine."""

    USERNAME_ALREADY_EXISTS = "USERNAME_ALREADY_EXISTS"
    USERNAME_LINKED_TO_DIFFERENT_WALLET = "USERNAME_LINKED_TO_DIFFERENT_WALLET"
    WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT = "WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT"
    ACCOUNT_ALREADY_HAS_WALLET = "ACCOUNT_ALREADY_HAS_WALLET"
    INVALID_IDENTIFIER = "INVALID_IDENTIFIER"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class IdentityError(Exception):
    """Base class for expected, reportable identity failures."""

    kind: ErrorKind

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def message(self) -> str:
        return str(self)


class ConflictError(IdentityError):
    """Uniqueness or binding-permanence violation. Never retried automatically."""


class NotFoundError(IdentityError):
    """Referenced account does not exist."""

    def __init__(self, account_id: str) -> None:
        super().__init__(ErrorKind.ACCOUNT_NOT_FOUND, f"Account '{account_id}' not found")
        self.account_id = account_id


class InvalidIdentifierError(IdentityError):
    """Malformed account id, username or wallet address."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(ErrorKind.INVALID_IDENTIFIER, f"Invalid {field}: {reason}")
        self.field = field
        self.reason = reason


class TransientError(IdentityError):
    """Store or issuer timed out or is unreachable. Safe for the caller to retry."""

    def __init__(self, message: str = "Identity store unavailable") -> None:
        super().__init__(ErrorKind.STORE_UNAVAILABLE, message)


class InvariantViolation(RuntimeError):
    """The store handed back data that breaks the account model (programmer error)."""


# ---------------------------------------------------------------------------
# Store-level signals, translated into conflicts by the engine
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for identity store write failures."""


class DuplicateValueError(StoreError):
    """A unique attribute (username key or wallet address) is already bound."""

    def __init__(self, attribute: str, value: str | None = None) -> None:
        super().__init__(f"Duplicate value for unique attribute '{attribute}'")
        self.attribute = attribute
        self.value = value


class DocumentExistsError(StoreError):
    """Insert target id already exists."""


class DocumentMissingError(StoreError):
    """Update target id does not exist."""


class PreconditionFailedError(StoreError):
    """Conditional update found the document in an unexpected state."""
