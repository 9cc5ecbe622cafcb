"""TOTP (Time-based One-Time Password) computation and verification.

Codes come from pyotp (HMAC-SHA1, 6 digits). Secrets are run through the
lenient Base32 codec first so spaces, lowercase and padding in user-entered
secrets are accepted. Verification allows the current time step and one
step either side, roughly +-30s of clock skew at the default step size.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import pyotp

from twofactor.otp import base32

logger = logging.getLogger(__name__)

DIGITS = 6
DEFAULT_STEP_SECONDS = 30


def _normalize(secret: str) -> str:
    key = base32.decode(secret)
    if not key:
        raise ValueError("TOTP secret decodes to an empty key")
    return base32.encode(key)


def _moment(at: datetime | float) -> datetime:
    seconds = at.timestamp() if isinstance(at, datetime) else at
    return datetime.fromtimestamp(int(seconds), tz=UTC)


def hotp(key: bytes, counter: int) -> str:
    """Compute the HOTP value for a raw key and a counter."""
    return pyotp.HOTP(base32.encode(key), digits=DIGITS).at(counter)


def time_step(at: datetime | float, step_seconds: int = DEFAULT_STEP_SECONDS) -> int:
    """Unix time divided (floored) into fixed-size steps."""
    seconds = at.timestamp() if isinstance(at, datetime) else at
    return int(seconds // step_seconds)


def generate(secret: str, at: datetime | float, step_seconds: int = DEFAULT_STEP_SECONDS) -> str:
    """Get the TOTP code for a Base32 secret at a given time."""
    return pyotp.TOTP(_normalize(secret), digits=DIGITS, interval=step_seconds).at(_moment(at))


def verify(
    secret: str,
    code: str,
    at: datetime | float,
    step_seconds: int = DEFAULT_STEP_SECONDS,
    window: int = 1,
) -> bool:
    """Verify a submitted code against a secret (allows +-window steps).

    Errors while computing (bad secret, ...) count as a mismatch.
    """
    try:
        # pyotp compares NFKC-normalised strings; full-width digits are not codes
        if not code.isascii():
            return False
        otp = pyotp.TOTP(_normalize(secret), digits=DIGITS, interval=step_seconds)
        return otp.verify(code, for_time=_moment(at), valid_window=window)
    except Exception:
        logger.warning("TOTP verification failed", exc_info=True)
        return False


def provisioning_uri(
    secret: str,
    account: str,
    issuer: str,
    step_seconds: int = DEFAULT_STEP_SECONDS,
) -> str:
    """Get the otpauth:// URI for QR code enrollment."""
    return pyotp.TOTP(secret, interval=step_seconds).provisioning_uri(name=account, issuer_name=issuer)
