"""Random secrets, numeric one-time codes and backup codes.

Every value comes from the ``secrets`` module (OS CSPRNG).
"""

from __future__ import annotations

import secrets

from twofactor.otp import base32

SECRET_BYTES = 20
BACKUP_CODE_BYTES = 5


def generate_secret() -> str:
    """Generate a new TOTP secret (base32-encoded, 32 chars)."""
    return base32.encode(secrets.token_bytes(SECRET_BYTES))


def generate_numeric_code(length: int = 6) -> str:
    """Generate a zero-padded numeric code of ``length`` digits."""
    if not 1 <= length <= 9:
        raise ValueError(f"Numeric code length must be between 1 and 9, got {length}")
    number = int.from_bytes(secrets.token_bytes(4), "little")
    return str(number % 10**length).zfill(length)


def generate_backup_code() -> str:
    """Generate one recovery code formatted as ``XXXX-XXXX`` (uppercase hex)."""
    digits = secrets.token_bytes(BACKUP_CODE_BYTES).hex().upper()
    return f"{digits[:4]}-{digits[4:8]}"


def generate_backup_codes(count: int = 10) -> list[str]:
    return [generate_backup_code() for _ in range(count)]


def normalize_backup_code(code: str) -> str:
    """Canonical form used for comparison: no separators, uppercase."""
    return "".join(code.split()).replace("-", "").upper()
