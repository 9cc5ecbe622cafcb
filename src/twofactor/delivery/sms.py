"""SMS delivery through an HTTP gateway.

The gateway receives ``{"to": ..., "message": ...}`` as JSON with a bearer
API key. Any transport or HTTP error becomes DeliveryUnavailable.
"""

from __future__ import annotations

import logging

import httpx

from twofactor.config import Settings, settings as default_settings
from twofactor.errors import DeliveryUnavailable

logger = logging.getLogger(__name__)


class HttpSmsGateway:
    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.sms_gateway_api_key}",
            "Content-Type": "application/json",
        }

    async def send_sms(self, phone_number: str, text: str) -> None:
        if not self.settings.sms_gateway_url or not self.settings.sms_gateway_api_key:
            logger.error("SMS gateway not configured")
            raise DeliveryUnavailable("SMS gateway not configured")

        try:
            if self._client is not None:
                resp = await self._post(self._client, phone_number, text)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await self._post(client, phone_number, text)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("SMS delivery to ***%s failed", phone_number[-4:], exc_info=True)
            raise DeliveryUnavailable(f"SMS delivery failed: {e}") from e

        logger.info("SMS code sent to ***%s", phone_number[-4:])

    async def _post(self, client: httpx.AsyncClient, phone_number: str, text: str) -> httpx.Response:
        return await client.post(
            self.settings.sms_gateway_url,
            headers=self._headers(),
            json={"to": phone_number, "message": text},
            timeout=self.settings.sms_timeout_s,
        )
