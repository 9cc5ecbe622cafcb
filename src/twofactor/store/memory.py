"""In-process stores with the same conditional-write semantics as Postgres.

Suitable for tests and single-process deployments. Stored objects are
copied on the way in and out so callers never share mutable state with
the store.
"""

from __future__ import annotations

import threading
from datetime import datetime
from uuid import UUID

from twofactor.errors import ConcurrencyConflict
from twofactor.models import OneTimeCode, TwoFactorRecord


class MemoryRecordStore:
    def __init__(self) -> None:
        self._records: dict[str, TwoFactorRecord] = {}
        self._lock = threading.Lock()

    async def get(self, user_id: str) -> TwoFactorRecord | None:
        with self._lock:
            record = self._records.get(user_id)
            return record.model_copy(deep=True) if record else None

    async def upsert(self, record: TwoFactorRecord) -> TwoFactorRecord:
        with self._lock:
            current = self._records.get(record.user_id)
            stored_version = current.version if current else 0
            if stored_version != record.version:
                raise ConcurrencyConflict(record.user_id, record.version)
            saved = record.model_copy(deep=True, update={"version": record.version + 1})
            self._records[record.user_id] = saved
            return saved.model_copy(deep=True)


class MemoryCodeStore:
    def __init__(self) -> None:
        self._codes: dict[UUID, OneTimeCode] = {}
        self._lock = threading.Lock()

    async def insert(self, code: OneTimeCode) -> None:
        with self._lock:
            self._codes[code.id] = code.model_copy(deep=True)

    async def find_unused_unexpired(
        self,
        user_id: str,
        code: str,
        now: datetime,
        purpose: str | None = None,
    ) -> OneTimeCode | None:
        with self._lock:
            matches = [
                c for c in self._codes.values()
                if c.user_id == user_id
                and c.code == code
                and c.is_usable(now)
                and (purpose is None or c.purpose == purpose)
            ]
            if not matches:
                return None
            newest = max(matches, key=lambda c: c.created_at)
            return newest.model_copy(deep=True)

    async def mark_used(self, code_id: UUID, now: datetime) -> bool:
        with self._lock:
            stored = self._codes.get(code_id)
            if stored is None or stored.is_used:
                return False
            stored.is_used = True
            stored.used_at = now
            return True

    def all_for(self, user_id: str) -> list[OneTimeCode]:
        """Every code ever issued to a user, oldest first."""
        with self._lock:
            codes = [c.model_copy(deep=True) for c in self._codes.values() if c.user_id == user_id]
        return sorted(codes, key=lambda c: c.created_at)
