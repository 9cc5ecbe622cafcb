"""Two-factor orchestration: setup, enable, login verification, backup codes.

Every mutation is a read-modify-write of one TwoFactorRecord persisted
through a version-checked upsert. On a ConcurrencyConflict the record is
re-read and the change re-applied (``settings.conflict_retries`` times).
Code checks happen once, before the write loop, so a one-time code consumed
by a request is never consumed twice by its retry. State guards such as
the lockout are re-evaluated on every re-read.

Operations are coroutines. Changes live only on the in-memory aggregate until
the single upsert, so a cancelled call never leaves a partial write behind.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Protocol, TypeVar, assert_never

from twofactor.clock import Clock, SystemClock
from twofactor.config import Settings, settings as default_settings
from twofactor.delivery.base import DeliveryChannel
from twofactor.errors import (
    AccountLocked,
    AlreadyEnabled,
    ConcurrencyConflict,
    InvalidCode,
    InvalidSetup,
    NotFound,
    NotSetUp,
)
from twofactor.models import (
    PURPOSE_ENABLE,
    PURPOSE_LOGIN,
    AuthenticatorFactor,
    EmailFactor,
    OneTimeCode,
    SetupResult,
    SmsFactor,
    TwoFactorMethod,
    TwoFactorRecord,
    TwoFactorStatus,
    mask_email,
    mask_phone,
)
from twofactor.otp import totp
from twofactor.otp.generator import generate_backup_codes, generate_numeric_code, generate_secret
from twofactor.store.base import CodeStore, RecordStore

if TYPE_CHECKING:
    from twofactor.db import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMAIL_SUBJECT = "2FA Verification Code"


class _Superseded(Exception):
    """The record changed between a code check and the write."""


class UserDirectory(Protocol):
    """Answers whether a user id belongs to a real account."""

    async def exists(self, user_id: str) -> bool: ...


class TwoFactorService:
    def __init__(
        self,
        records: RecordStore,
        codes: CodeStore,
        delivery: DeliveryChannel,
        settings: Settings | None = None,
        clock: Clock | None = None,
        users: UserDirectory | None = None,
    ) -> None:
        self.records = records
        self.codes = codes
        self.delivery = delivery
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.users = users

    @property
    def lockout(self) -> timedelta:
        return timedelta(minutes=self.settings.lockout_minutes)

    # ------------------------------------------------------------------
    # Setup / enable / disable
    # ------------------------------------------------------------------

    async def setup(
        self,
        user_id: str,
        method: TwoFactorMethod | str,
        contact: str | None = None,
        account_name: str | None = None,
    ) -> SetupResult:
        """Create or replace a pending record for ``method``.

        Authenticator setups get a fresh secret and an otpauth:// URI; SMS
        and email setups store the contact and immediately send an
        ``Enable2FA`` code. Raises AlreadyEnabled if 2FA is already on and
        NotFound if a user directory is configured and does not know the user.
        """
        method = TwoFactorMethod(method)
        if self.users is not None and not await self.users.exists(user_id):
            raise NotFound(user_id)
        now = self.clock.now()
        factor = self._build_factor(method, contact)
        backup_codes = generate_backup_codes(self.settings.backup_code_count)

        def reconfigure(record: TwoFactorRecord) -> None:
            record.configure(factor, backup_codes, now)

        saved, _ = await self._update(
            user_id,
            reconfigure,
            create=lambda: TwoFactorRecord.create(user_id, factor, backup_codes, now),
        )
        logger.info("2FA setup started for user %s (method=%s)", user_id, method)

        if isinstance(factor, AuthenticatorFactor):
            uri = totp.provisioning_uri(
                factor.secret,
                account_name or user_id,
                self.settings.issuer,
                self.settings.totp_time_step_seconds,
            )
            return SetupResult(
                method=method,
                backup_codes=backup_codes,
                secret=factor.secret,
                provisioning_uri=uri,
                message="2FA setup initiated. Please verify with a code to enable.",
            )

        await self._issue_code(saved, PURPOSE_ENABLE, now)
        return SetupResult(
            method=method,
            backup_codes=backup_codes,
            message=f"Verification code sent via {method}. Please verify to enable 2FA.",
        )

    async def enable(self, user_id: str, code: str) -> None:
        """Turn on a pending record once the user proves possession.

        Failed attempts here do not count toward the lockout.
        """
        now = self.clock.now()
        record = await self.records.get(user_id)
        if record is None:
            raise NotSetUp(user_id)
        if record.is_enabled:
            raise AlreadyEnabled(user_id)

        if not await self._check_code(record, code, now, purpose=PURPOSE_ENABLE):
            logger.warning("2FA enable rejected for user %s: invalid code", user_id)
            raise InvalidCode()

        def enable(r: TwoFactorRecord) -> None:
            # A concurrent setup may have replaced the factor the code was checked against
            if r.factor != record.factor:
                raise _Superseded()
            r.enable(now)

        try:
            await self._update(user_id, enable)
        except _Superseded:
            logger.warning("2FA enable rejected for user %s: factor changed during check", user_id)
            raise InvalidCode() from None
        logger.info("2FA enabled for user %s", user_id)

    async def disable(self, user_id: str, code: str) -> None:
        """Turn 2FA off after a successful verification with a current code."""
        record = await self.records.get(user_id)
        if record is None or not record.is_enabled:
            raise NotSetUp(user_id)

        if not await self.verify(user_id, code):
            raise InvalidCode()

        now = self.clock.now()
        await self._update(user_id, lambda r: r.disable(now))
        logger.info("2FA disabled for user %s", user_id)

    # ------------------------------------------------------------------
    # Login-time verification
    # ------------------------------------------------------------------

    async def verify(self, user_id: str, code: str) -> bool:
        """Check a login code and update the failed-attempt counter.

        Returns False when 2FA is not active for the user or the code is
        wrong. Raises AccountLocked, before looking at the code, while a
        lockout is in effect.
        """
        now = self.clock.now()
        record = await self.records.get(user_id)
        if record is None or not record.is_enabled:
            logger.info("2FA verification skipped for user %s: not enabled", user_id)
            return False
        self._ensure_unlocked(record, now)

        valid = await self._check_code(record, code, now)

        def apply(r: TwoFactorRecord) -> None:
            if not r.is_enabled or r.factor != record.factor:
                raise _Superseded()
            self._ensure_unlocked(r, now)
            self._apply_outcome(r, valid, now)

        try:
            saved, _ = await self._update(user_id, apply)
        except _Superseded:
            logger.info("2FA verification dropped for user %s: record changed during check", user_id)
            return False
        if valid:
            logger.info("2FA code verified for user %s", user_id)
        else:
            self._log_failure(saved)
        return valid

    async def verify_backup_code(self, user_id: str, code: str) -> bool:
        """Redeem a single-use backup code in place of a regular code."""
        now = self.clock.now()
        record = await self.records.get(user_id)
        if record is None or not record.is_enabled:
            return False
        self._ensure_unlocked(record, now)

        def redeem(r: TwoFactorRecord) -> bool:
            if not r.is_enabled:
                raise _Superseded()
            self._ensure_unlocked(r, now)
            try:
                matched = r.redeem_backup_code(code, now)
            except Exception:
                logger.warning("Backup code check failed for user %s", user_id, exc_info=True)
                matched = False
            self._apply_outcome(r, matched, now)
            return matched

        try:
            saved, matched = await self._update(user_id, redeem)
        except _Superseded:
            return False
        if matched:
            logger.info("Backup code redeemed for user %s (%d left)", user_id, len(saved.backup_codes))
        else:
            self._log_failure(saved)
        return bool(matched)

    async def regenerate_backup_codes(self, user_id: str, code: str) -> list[str]:
        """Replace the whole backup-code set after re-verifying the user."""
        record = await self.records.get(user_id)
        if record is None or not record.is_enabled:
            raise NotSetUp(user_id)

        if not await self.verify(user_id, code):
            raise InvalidCode()

        now = self.clock.now()
        backup_codes = generate_backup_codes(self.settings.backup_code_count)

        def replace(r: TwoFactorRecord) -> None:
            if not r.is_enabled:
                raise NotSetUp(user_id)
            r.replace_backup_codes(backup_codes, now)

        await self._update(user_id, replace)
        logger.info("Backup codes regenerated for user %s", user_id)
        return backup_codes

    # ------------------------------------------------------------------
    # Delivered codes and status
    # ------------------------------------------------------------------

    async def send_code(self, user_id: str, purpose: str = PURPOSE_LOGIN) -> datetime:
        """Issue and deliver a fresh SMS/email code. Returns its expiry."""
        record = await self.records.get(user_id)
        if record is None:
            raise NotSetUp(user_id)
        if isinstance(record.factor, AuthenticatorFactor):
            raise InvalidSetup("Authenticator records do not use delivered codes")
        issued = await self._issue_code(record, purpose, self.clock.now())
        return issued.expires_at

    async def status(self, user_id: str) -> TwoFactorStatus:
        record = await self.records.get(user_id)
        if record is None:
            return TwoFactorStatus()

        factor = record.factor
        return TwoFactorStatus(
            is_enabled=record.is_enabled,
            method=record.method,
            phone_number=mask_phone(factor.phone_number) if isinstance(factor, SmsFactor) else None,
            email=mask_email(factor.address) if isinstance(factor, EmailFactor) else None,
            backup_codes_remaining=len(record.backup_codes),
            locked_until=record.locked_until if record.is_locked(self.clock.now()) else None,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_factor(
        self, method: TwoFactorMethod, contact: str | None
    ) -> AuthenticatorFactor | SmsFactor | EmailFactor:
        if method is TwoFactorMethod.AUTHENTICATOR:
            return AuthenticatorFactor(secret=generate_secret())
        if not contact:
            raise InvalidSetup(f"A contact is required for the {method} method")
        if method is TwoFactorMethod.SMS:
            return SmsFactor(phone_number=contact)
        if method is TwoFactorMethod.EMAIL:
            return EmailFactor(address=contact)
        assert_never(method)

    def _ensure_unlocked(self, record: TwoFactorRecord, now: datetime) -> None:
        if record.is_locked(now):
            assert record.locked_until is not None
            logger.warning(
                "2FA verification refused for user %s: locked until %s",
                record.user_id,
                record.locked_until.isoformat(),
            )
            raise AccountLocked(record.locked_until)

    def _apply_outcome(self, record: TwoFactorRecord, valid: bool, now: datetime) -> None:
        if valid:
            record.record_success(now)
        else:
            record.record_failure(self.settings.max_failed_attempts, self.lockout, now)

    def _log_failure(self, record: TwoFactorRecord) -> None:
        if record.locked_until is not None and record.failed_attempts >= self.settings.max_failed_attempts:
            logger.warning(
                "2FA locked for user %s until %s after %d failed attempts",
                record.user_id,
                record.locked_until.isoformat(),
                record.failed_attempts,
            )
        else:
            logger.warning(
                "2FA verification failed for user %s (failed_attempts=%d)",
                record.user_id,
                record.failed_attempts,
            )

    async def _check_code(
        self,
        record: TwoFactorRecord,
        code: str,
        now: datetime,
        purpose: str | None = None,
    ) -> bool:
        """Validate ``code`` on the single path selected by the record's factor."""
        factor = record.factor
        if isinstance(factor, AuthenticatorFactor):
            return totp.verify(
                factor.secret,
                code,
                now,
                step_seconds=self.settings.totp_time_step_seconds,
                window=self.settings.totp_window,
            )
        if isinstance(factor, (SmsFactor, EmailFactor)):
            return await self._consume_code(record.user_id, code, now, purpose)
        assert_never(factor)

    async def _consume_code(self, user_id: str, code: str, now: datetime, purpose: str | None) -> bool:
        stored = await self.codes.find_unused_unexpired(user_id, code, now, purpose)
        if stored is None:
            return False
        # Another request may have redeemed it since the lookup
        return await self.codes.mark_used(stored.id, now)

    async def _issue_code(self, record: TwoFactorRecord, purpose: str, now: datetime) -> OneTimeCode:
        ttl = self.settings.code_ttl_minutes
        issued = OneTimeCode(
            user_id=record.user_id,
            code=generate_numeric_code(self.settings.code_length),
            method=record.method,
            purpose=purpose,
            expires_at=now + timedelta(minutes=ttl),
            created_at=now,
        )
        await self.codes.insert(issued)

        factor = record.factor
        if isinstance(factor, SmsFactor):
            await self.delivery.send_sms(
                factor.phone_number,
                f"Your verification code is: {issued.code}. Valid for {ttl} minutes.",
            )
        elif isinstance(factor, EmailFactor):
            await self.delivery.send_email(
                factor.address,
                EMAIL_SUBJECT,
                f"Your verification code is: {issued.code}. This code will expire in {ttl} minutes.",
            )
        else:
            raise InvalidSetup("Authenticator records do not use delivered codes")

        logger.info("Issued %s code for user %s (purpose=%s)", record.method, record.user_id, purpose)
        return issued

    async def _update(
        self,
        user_id: str,
        mutate: Callable[[TwoFactorRecord], T],
        create: Callable[[], TwoFactorRecord] | None = None,
    ) -> tuple[TwoFactorRecord, T | None]:
        """Re-read, mutate and conditionally write a record, retrying on conflict."""
        retries = self.settings.conflict_retries
        for attempt in range(retries + 1):
            record = await self.records.get(user_id)
            result: T | None = None
            if record is None:
                if create is None:
                    raise NotSetUp(user_id)
                record = create()
            else:
                result = mutate(record)
            try:
                return await self.records.upsert(record), result
            except ConcurrencyConflict:
                if attempt >= retries:
                    raise
                logger.warning("Concurrent update of 2FA record for user %s, retrying", user_id)
        raise AssertionError("unreachable")


def create_service(db: Database, settings: Settings | None = None) -> TwoFactorService:
    """Wire the Postgres stores and the SMS/SMTP delivery channel."""
    from twofactor.crypto import SecretBox
    from twofactor.delivery import CompositeChannel, HttpSmsGateway, SmtpEmailSender
    from twofactor.store.postgres import PostgresCodeStore, PostgresRecordStore

    cfg = settings or default_settings
    return TwoFactorService(
        records=PostgresRecordStore(db, SecretBox.from_settings(cfg)),
        codes=PostgresCodeStore(db),
        delivery=CompositeChannel(sms=HttpSmsGateway(cfg), email=SmtpEmailSender(cfg)),
        settings=cfg,
    )
