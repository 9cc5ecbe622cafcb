"""PostgreSQL-backed stores using conditional UPDATEs.

Record writes are guarded by the ``version`` column; code consumption is a
single ``UPDATE ... WHERE NOT is_used`` so two concurrent requests can never
both redeem the same code. TOTP secrets are sealed with a SecretBox when
the record store is given one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from twofactor.crypto import SecretBox
from twofactor.db import Database
from twofactor.errors import ConcurrencyConflict
from twofactor.models import (
    AuthenticatorFactor,
    EmailFactor,
    OneTimeCode,
    SmsFactor,
    TwoFactorMethod,
    TwoFactorRecord,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS two_factor_records (
    user_id          TEXT PRIMARY KEY,
    method           TEXT NOT NULL,
    secret           TEXT NOT NULL DEFAULT '',
    secret_encrypted BOOLEAN NOT NULL DEFAULT false,
    phone_number     TEXT,
    email            TEXT,
    backup_codes     TEXT[] NOT NULL DEFAULT '{}',
    is_enabled       BOOLEAN NOT NULL DEFAULT false,
    failed_attempts  INTEGER NOT NULL DEFAULT 0 CHECK (failed_attempts >= 0),
    last_attempt_at  TIMESTAMPTZ,
    locked_until     TIMESTAMPTZ,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    version          INTEGER NOT NULL DEFAULT 1,
    CHECK ((method = 'authenticator') = (secret <> ''))
);

CREATE TABLE IF NOT EXISTS two_factor_codes (
    id         UUID PRIMARY KEY,
    user_id    TEXT NOT NULL,
    code       TEXT NOT NULL,
    method     TEXT NOT NULL,
    purpose    TEXT NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    is_used    BOOLEAN NOT NULL DEFAULT false,
    used_at    TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_two_factor_codes_lookup
    ON two_factor_codes (user_id, code) WHERE NOT is_used;
"""


async def create_schema(db: Database) -> None:
    """Create tables and indexes if they do not exist."""
    async with db.connection() as conn:
        await conn.execute(SCHEMA)
    logger.info("two-factor schema ensured")


def _factor_from_row(
    row: dict[str, Any], box: SecretBox | None
) -> AuthenticatorFactor | SmsFactor | EmailFactor:
    method = TwoFactorMethod(row["method"])
    if method is TwoFactorMethod.AUTHENTICATOR:
        secret = row["secret"]
        if row.get("secret_encrypted"):
            if box is None:
                raise RuntimeError("Stored TOTP secret is encrypted but TWOFACTOR_MASTER_KEY is not set")
            secret = box.open(secret)
        return AuthenticatorFactor(secret=secret)
    if method is TwoFactorMethod.SMS:
        return SmsFactor(phone_number=row["phone_number"])
    return EmailFactor(address=row["email"])


def _record_from_row(row: dict[str, Any], box: SecretBox | None) -> TwoFactorRecord:
    return TwoFactorRecord(
        user_id=row["user_id"],
        factor=_factor_from_row(row, box),
        backup_codes=list(row["backup_codes"] or []),
        is_enabled=row["is_enabled"],
        failed_attempts=row["failed_attempts"],
        last_attempt_at=row["last_attempt_at"],
        locked_until=row["locked_until"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
    )


def _factor_columns(record: TwoFactorRecord, box: SecretBox | None) -> tuple[str, bool, str | None, str | None]:
    """(secret, secret_encrypted, phone_number, email) for a record's factor."""
    factor = record.factor
    if isinstance(factor, AuthenticatorFactor):
        if box is not None:
            return box.seal(factor.secret), True, None, None
        return factor.secret, False, None, None
    if isinstance(factor, SmsFactor):
        return "", False, factor.phone_number, None
    return "", False, None, factor.address


class PostgresRecordStore:
    def __init__(self, db: Database, box: SecretBox | None = None) -> None:
        self.db = db
        self.box = box

    async def get(self, user_id: str) -> TwoFactorRecord | None:
        row = await self.db.execute_one(
            "SELECT * FROM two_factor_records WHERE user_id = %s",
            (user_id,),
        )
        return _record_from_row(row, self.box) if row else None

    async def upsert(self, record: TwoFactorRecord) -> TwoFactorRecord:
        secret, encrypted, phone, email = _factor_columns(record, self.box)
        if record.version == 0:
            row = await self.db.execute_one(
                """INSERT INTO two_factor_records
                   (user_id, method, secret, secret_encrypted, phone_number, email,
                    backup_codes, is_enabled, failed_attempts, last_attempt_at,
                    locked_until, created_at, updated_at, version)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 1)
                   ON CONFLICT (user_id) DO NOTHING
                   RETURNING version""",
                (
                    record.user_id,
                    str(record.method),
                    secret,
                    encrypted,
                    phone,
                    email,
                    record.backup_codes,
                    record.is_enabled,
                    record.failed_attempts,
                    record.last_attempt_at,
                    record.locked_until,
                    record.created_at,
                    record.updated_at,
                ),
            )
        else:
            row = await self.db.execute_one(
                """UPDATE two_factor_records
                   SET method = %s, secret = %s, secret_encrypted = %s,
                       phone_number = %s, email = %s, backup_codes = %s,
                       is_enabled = %s, failed_attempts = %s, last_attempt_at = %s,
                       locked_until = %s, updated_at = %s, version = version + 1
                   WHERE user_id = %s AND version = %s
                   RETURNING version""",
                (
                    str(record.method),
                    secret,
                    encrypted,
                    phone,
                    email,
                    record.backup_codes,
                    record.is_enabled,
                    record.failed_attempts,
                    record.last_attempt_at,
                    record.locked_until,
                    record.updated_at,
                    record.user_id,
                    record.version,
                ),
            )
        if row is None:
            raise ConcurrencyConflict(record.user_id, record.version)
        return record.model_copy(deep=True, update={"version": row["version"]})


class PostgresCodeStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert(self, code: OneTimeCode) -> None:
        await self.db.execute(
            """INSERT INTO two_factor_codes
               (id, user_id, code, method, purpose, expires_at, is_used, used_at, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                code.id,
                code.user_id,
                code.code,
                str(code.method),
                code.purpose,
                code.expires_at,
                code.is_used,
                code.used_at,
                code.created_at,
            ),
        )

    async def find_unused_unexpired(
        self,
        user_id: str,
        code: str,
        now: datetime,
        purpose: str | None = None,
    ) -> OneTimeCode | None:
        conditions = ["user_id = %s", "code = %s", "NOT is_used", "expires_at > %s"]
        params: list[Any] = [user_id, code, now]
        if purpose is not None:
            conditions.append("purpose = %s")
            params.append(purpose)

        where = " AND ".join(conditions)
        row = await self.db.execute_one(
            f"""SELECT id, user_id, code, method, purpose, expires_at,
                       is_used, used_at, created_at
                FROM two_factor_codes
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT 1""",
            tuple(params),
        )
        return OneTimeCode(**row) if row else None

    async def mark_used(self, code_id: UUID, now: datetime) -> bool:
        row = await self.db.execute_one(
            """UPDATE two_factor_codes
               SET is_used = true, used_at = %s
               WHERE id = %s AND NOT is_used
               RETURNING id""",
            (now, code_id),
        )
        return row is not None
