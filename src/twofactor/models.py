"""Pydantic models for two-factor state and operation results."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Annotated, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from twofactor.errors import AlreadyEnabled, NotSetUp
from twofactor.otp.generator import normalize_backup_code

PURPOSE_ENABLE = "Enable2FA"
PURPOSE_LOGIN = "Login"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TwoFactorMethod(StrEnum):
    AUTHENTICATOR = "authenticator"
    SMS = "sms"
    EMAIL = "email"


# === Factor variants (exactly one per record) ===


class AuthenticatorFactor(BaseModel):
    """TOTP app; the shared secret lives only on this variant."""

    model_config = ConfigDict(frozen=True)

    method: Literal["authenticator"] = "authenticator"
    secret: str = Field(min_length=1)


class SmsFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: Literal["sms"] = "sms"
    phone_number: str = Field(min_length=1)


class EmailFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: Literal["email"] = "email"
    address: str = Field(min_length=1)


Factor = Annotated[
    AuthenticatorFactor | SmsFactor | EmailFactor,
    Field(discriminator="method"),
]


# === Aggregate ===


class TwoFactorRecord(BaseModel):
    """Per-user two-factor state.

    Loaded by user id, changed only through the methods below, and written
    back through a RecordStore that checks ``version``. A record with
    ``version == 0`` has never been persisted.
    """

    user_id: str
    factor: Factor
    backup_codes: list[str] = Field(default_factory=list)
    is_enabled: bool = False
    failed_attempts: int = Field(default=0, ge=0)
    last_attempt_at: datetime | None = None
    locked_until: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = 0

    @classmethod
    def create(
        cls,
        user_id: str,
        factor: AuthenticatorFactor | SmsFactor | EmailFactor,
        backup_codes: list[str],
        now: datetime,
    ) -> TwoFactorRecord:
        return cls(
            user_id=user_id,
            factor=factor,
            backup_codes=list(backup_codes),
            created_at=now,
            updated_at=now,
        )

    @property
    def method(self) -> TwoFactorMethod:
        return TwoFactorMethod(self.factor.method)

    @property
    def secret(self) -> str:
        """Base32 TOTP secret; empty for SMS and email records."""
        if isinstance(self.factor, AuthenticatorFactor):
            return self.factor.secret
        return ""

    @property
    def contact(self) -> str | None:
        if isinstance(self.factor, SmsFactor):
            return self.factor.phone_number
        if isinstance(self.factor, EmailFactor):
            return self.factor.address
        return None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def configure(
        self,
        factor: AuthenticatorFactor | SmsFactor | EmailFactor,
        backup_codes: list[str],
        now: datetime,
    ) -> None:
        """Replace method, secret/contact and backup codes of a pending record."""
        if self.is_enabled:
            raise AlreadyEnabled(self.user_id)
        self.factor = factor
        self.backup_codes = list(backup_codes)
        self.updated_at = now

    def enable(self, now: datetime) -> None:
        if self.is_enabled:
            raise AlreadyEnabled(self.user_id)
        self.is_enabled = True
        self.updated_at = now

    def disable(self, now: datetime) -> None:
        if not self.is_enabled:
            raise NotSetUp(self.user_id)
        self.is_enabled = False
        self.updated_at = now

    def record_failure(self, max_failed_attempts: int, lockout: timedelta, now: datetime) -> None:
        self.failed_attempts += 1
        self.last_attempt_at = now
        if self.failed_attempts >= max_failed_attempts:
            self.locked_until = now + lockout
        self.updated_at = now

    def record_success(self, now: datetime) -> None:
        self.failed_attempts = 0
        self.locked_until = None
        self.last_attempt_at = now
        self.updated_at = now

    def redeem_backup_code(self, code: str, now: datetime) -> bool:
        """Remove a matching backup code from the active set.

        Matching ignores hyphens, whitespace and case. Returns False when
        nothing matched; the set is left unchanged in that case.
        """
        wanted = normalize_backup_code(code)
        if not wanted:
            return False
        remaining = [c for c in self.backup_codes if normalize_backup_code(c) != wanted]
        if len(remaining) == len(self.backup_codes):
            return False
        self.backup_codes = remaining
        self.updated_at = now
        return True

    def replace_backup_codes(self, backup_codes: list[str], now: datetime) -> None:
        if not backup_codes:
            raise ValueError("Backup codes cannot be empty")
        self.backup_codes = list(backup_codes)
        self.updated_at = now


class OneTimeCode(BaseModel):
    """A numeric code delivered by SMS or email for a single purpose."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    code: str
    method: TwoFactorMethod
    purpose: str = PURPOSE_LOGIN
    expires_at: datetime
    is_used: bool = False
    used_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    def is_usable(self, now: datetime) -> bool:
        return not self.is_used and now < self.expires_at


# === Operation results ===


class SetupResult(BaseModel):
    """Returned by setup; secret and URI are only set for authenticator apps."""

    method: TwoFactorMethod
    backup_codes: list[str]
    message: str
    secret: str | None = None
    provisioning_uri: str | None = None


class TwoFactorStatus(BaseModel):
    is_enabled: bool = False
    method: TwoFactorMethod | None = None
    phone_number: str | None = None  # masked
    email: str | None = None  # masked
    backup_codes_remaining: int = 0
    locked_until: datetime | None = None


def mask_phone(phone: str) -> str:
    if len(phone) < 4:
        return phone
    return f"***{phone[-4:]}"


def mask_email(email: str) -> str:
    parts = email.split("@")
    if len(parts) != 2:
        return email
    username, domain = parts
    if len(username) <= 2:
        return email
    return f"{username[0]}***{username[-1]}@{domain}"
