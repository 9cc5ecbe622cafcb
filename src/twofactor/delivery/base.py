"""Delivery contract and a channel that routes SMS and email separately."""

from __future__ import annotations

from typing import Protocol

from twofactor.errors import DeliveryUnavailable


class SmsSender(Protocol):
    async def send_sms(self, phone_number: str, text: str) -> None: ...


class EmailSender(Protocol):
    async def send_email(self, address: str, subject: str, body: str) -> None: ...


class DeliveryChannel(SmsSender, EmailSender, Protocol):
    """Sends codes to users. Failures raise DeliveryUnavailable."""


class CompositeChannel:
    """Combine an SMS sender and an email sender; either may be missing."""

    def __init__(self, sms: SmsSender | None = None, email: EmailSender | None = None) -> None:
        self.sms = sms
        self.email = email

    async def send_sms(self, phone_number: str, text: str) -> None:
        if self.sms is None:
            raise DeliveryUnavailable("SMS delivery is not configured")
        await self.sms.send_sms(phone_number, text)

    async def send_email(self, address: str, subject: str, body: str) -> None:
        if self.email is None:
            raise DeliveryUnavailable("Email delivery is not configured")
        await self.email.send_email(address, subject, body)
