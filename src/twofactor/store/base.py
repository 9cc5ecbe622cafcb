"""Store contracts the orchestrator depends on."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from twofactor.models import OneTimeCode, TwoFactorRecord


class RecordStore(Protocol):
    async def get(self, user_id: str) -> TwoFactorRecord | None:
        """Load the record for a user, or None if setup never happened."""
        ...

    async def upsert(self, record: TwoFactorRecord) -> TwoFactorRecord:
        """Conditionally write a record and return it with its new version.

        Inserting requires ``record.version == 0`` and no stored row;
        updating requires the stored version to equal ``record.version``.
        Raises ConcurrencyConflict otherwise.
        """
        ...


class CodeStore(Protocol):
    async def insert(self, code: OneTimeCode) -> None: ...

    async def find_unused_unexpired(
        self,
        user_id: str,
        code: str,
        now: datetime,
        purpose: str | None = None,
    ) -> OneTimeCode | None:
        """Newest unused code for the user matching ``code`` that is still valid at ``now``."""
        ...

    async def mark_used(self, code_id: UUID, now: datetime) -> bool:
        """Flip ``is_used`` atomically; False if it was already used."""
        ...
