"""AES-256-GCM sealing of TOTP secrets before they reach the database."""

from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from twofactor.config import Settings, settings as default_settings

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_KEY_SIZE = 32


class SecretBox:
    """Encrypts short strings as base64(nonce + ciphertext)."""

    def __init__(self, key: bytes) -> None:
        if len(key) != _KEY_SIZE:
            raise ValueError("TWOFACTOR_MASTER_KEY must be 32 bytes (base64-encoded)")
        self._aead = AESGCM(key)

    @classmethod
    def from_encoded_key(cls, raw: str) -> SecretBox:
        if not raw:
            raise RuntimeError("TWOFACTOR_MASTER_KEY not set")
        return cls(base64.b64decode(raw))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SecretBox | None:
        """A box for the configured master key, or None when encryption is off."""
        raw = (settings or default_settings).twofactor_master_key
        return cls.from_encoded_key(raw) if raw else None

    def seal(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_SIZE)
        ct = self._aead.encrypt(nonce, plaintext.encode(), None)
        return base64.b64encode(nonce + ct).decode()

    def open(self, token: str) -> str:
        raw = base64.b64decode(token)
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        return self._aead.decrypt(nonce, ct, None).decode()
