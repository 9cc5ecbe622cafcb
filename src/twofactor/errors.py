"""Exception taxonomy for the two-factor core.

Validation errors (``NotSetUp``, ``AlreadyEnabled``, ``InvalidCode``,
``InvalidSetup``) are recoverable by the caller and leave persisted state
untouched beyond what the failing operation documents. ``AccountLocked``
carries the unlock time so a user-facing message can be produced.
"""

from __future__ import annotations

from datetime import datetime, timedelta


class TwoFactorError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(TwoFactorError):
    """The caller supplied input that cannot be accepted as-is."""


class NotSetUp(ValidationError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"2FA is not set up for user {user_id}")
        self.user_id = user_id


class AlreadyEnabled(ValidationError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"2FA is already enabled for user {user_id}; disable it first")
        self.user_id = user_id


class InvalidCode(ValidationError):
    def __init__(self, message: str = "Invalid verification code") -> None:
        super().__init__(message)


class InvalidSetup(ValidationError):
    """Setup arguments do not fit the chosen method (e.g. SMS without a phone)."""


class AccountLocked(TwoFactorError):
    def __init__(self, locked_until: datetime) -> None:
        super().__init__(
            "Too many failed attempts; try again after "
            f"{locked_until:%Y-%m-%d %H:%M:%S} UTC"
        )
        self.locked_until = locked_until

    def remaining(self, now: datetime) -> timedelta:
        """Time left until the lockout expires (never negative)."""
        return max(self.locked_until - now, timedelta(0))


class DeliveryUnavailable(TwoFactorError):
    """The SMS or email channel is not configured or failed to deliver."""


class NotFound(TwoFactorError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"Unknown user {user_id}")
        self.user_id = user_id


class ConcurrencyConflict(TwoFactorError):
    """The stored record changed between read and conditional write."""

    def __init__(self, user_id: str, expected_version: int) -> None:
        super().__init__(
            f"Two-factor record for {user_id} changed concurrently (expected version {expected_version})"
        )
        self.user_id = user_id
        self.expected_version = expected_version
