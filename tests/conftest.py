"""Shared fixtures: in-memory stores, a controllable clock and a delivery fake."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

import pytest

from twofactor.config import Settings
from twofactor.errors import DeliveryUnavailable
from twofactor.otp import base32, totp
from twofactor.service import TwoFactorService
from twofactor.store.memory import MemoryCodeStore, MemoryRecordStore

START = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)

_CODE_RE = re.compile(r"\b(\d{6})\b")


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class RecordingDelivery:
    """Captures outgoing messages instead of sending them."""

    def __init__(self) -> None:
        self.sms: list[tuple[str, str]] = []
        self.emails: list[tuple[str, str, str]] = []
        self.fail = False

    async def send_sms(self, phone_number: str, text: str) -> None:
        if self.fail:
            raise DeliveryUnavailable("SMS gateway down")
        self.sms.append((phone_number, text))

    async def send_email(self, address: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryUnavailable("SMTP down")
        self.emails.append((address, subject, body))

    def last_code(self) -> str:
        texts = [t for _, t in self.sms] + [b for _, _, b in self.emails]
        match = _CODE_RE.search(texts[-1])
        assert match, texts[-1]
        return match.group(1)


def wrong_totp(secret: str, at: datetime) -> str:
    """A 6-digit code guaranteed not to be accepted at ``at``."""
    step = totp.time_step(at)
    valid = {totp.hotp(base32.decode(secret), step + i) for i in (-1, 0, 1)}
    candidate = 0
    while f"{candidate:06d}" in valid:
        candidate += 1
    return f"{candidate:06d}"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, twofactor_master_key="", sms_gateway_url="", smtp_host="")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def records() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def codes() -> MemoryCodeStore:
    return MemoryCodeStore()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def service(records, codes, delivery, settings, clock) -> TwoFactorService:
    return TwoFactorService(records, codes, delivery, settings=settings, clock=clock)
