"""Email delivery over SMTP (STARTTLS or implicit TLS)."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.utils import formataddr, parseaddr

from twofactor.config import Settings, settings as default_settings
from twofactor.errors import DeliveryUnavailable

logger = logging.getLogger(__name__)


class SmtpEmailSender:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings

    def _build(self, address: str, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        name, sender = parseaddr(self.settings.email_from)
        msg["From"] = formataddr((name, sender))
        msg["To"] = address
        msg["Subject"] = subject
        return msg

    def _send_blocking(self, msg: MIMEText) -> None:
        cfg = self.settings
        context = ssl.create_default_context()
        if cfg.smtp_use_tls:
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if cfg.smtp_username:
                    server.login(cfg.smtp_username, cfg.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, context=context, timeout=30) as server:
                if cfg.smtp_username:
                    server.login(cfg.smtp_username, cfg.smtp_password)
                server.send_message(msg)

    async def send_email(self, address: str, subject: str, body: str) -> None:
        if not self.settings.smtp_host:
            logger.error("SMTP host not configured")
            raise DeliveryUnavailable("Email delivery not configured")

        msg = self._build(address, subject, body)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email delivery failed", exc_info=True)
            raise DeliveryUnavailable(f"Email delivery failed: {e}") from e

        logger.info("Email code sent (subject=%r)", subject)
