"""Tests for TOTP computation and verification."""

from __future__ import annotations

from datetime import UTC, datetime
from urllib.parse import parse_qs, unquote, urlparse

import pyotp
import pytest

from twofactor.otp import base32, totp

# RFC 6238 appendix B, SHA1 seed "12345678901234567890"
RFC_SECRET = base32.encode(b"12345678901234567890")
RFC_VECTORS = [
    (59, "94287082"),
    (1111111109, "07081804"),
    (1111111111, "14050471"),
    (1234567890, "89005924"),
    (2000000000, "69279037"),
    (20000000000, "65353130"),
]


@pytest.mark.parametrize(("unix", "eight_digits"), RFC_VECTORS)
def test_rfc6238_vectors(unix, eight_digits):
    # 6-digit truncation keeps the low six digits of the 8-digit value
    assert totp.generate(RFC_SECRET, unix) == eight_digits[-6:]


def test_known_secret_matches_pyotp():
    secret = "JBSWY3DPEHPK3PXP"
    assert totp.time_step(59) == 1
    assert totp.generate(secret, 59) == pyotp.TOTP(secret).at(59)


def test_generate_matches_pyotp_for_random_secrets():
    for _ in range(5):
        secret = pyotp.random_base32()
        for unix in (0, 29, 30, 1_700_000_000):
            assert totp.generate(secret, unix) == pyotp.TOTP(secret).at(unix)


def test_generate_accepts_datetimes():
    at = datetime.fromtimestamp(1111111109, tz=UTC)
    assert totp.generate(RFC_SECRET, at) == "081804"


def test_generate_is_deterministic():
    assert totp.generate(RFC_SECRET, 1234567890) == totp.generate(RFC_SECRET, 1234567890)


def test_custom_step_size():
    assert totp.time_step(119, step_seconds=60) == 1
    assert totp.generate(RFC_SECRET, 119, step_seconds=60) == pyotp.TOTP(RFC_SECRET, interval=60).at(119)


def test_verify_accepts_adjacent_steps():
    issued_at = 1111111109
    code = totp.generate(RFC_SECRET, issued_at)
    assert totp.verify(RFC_SECRET, code, issued_at)
    assert totp.verify(RFC_SECRET, code, issued_at - 30)
    assert totp.verify(RFC_SECRET, code, issued_at + 30)


def test_verify_rejects_two_steps_away():
    issued_at = 1111111109
    code = totp.generate(RFC_SECRET, issued_at)
    assert not totp.verify(RFC_SECRET, code, issued_at + 60)
    assert not totp.verify(RFC_SECRET, code, issued_at - 60)


def test_verify_window_zero_only_current_step():
    issued_at = 1111111109
    code = totp.generate(RFC_SECRET, issued_at)
    assert not totp.verify(RFC_SECRET, code, issued_at + 30, window=0)


def test_verify_wrong_code():
    key = base32.decode(RFC_SECRET)
    window = {totp.hotp(key, totp.time_step(59) + i) for i in (-1, 0, 1)}
    wrong = next(f"{n:06d}" for n in range(10) if f"{n:06d}" not in window)
    assert not totp.verify(RFC_SECRET, wrong, 59)
    assert not totp.verify(RFC_SECRET, "28708", 59)


def test_verify_bad_secret_never_matches():
    assert not totp.verify("!!!!", "123456", 59)
    with pytest.raises(ValueError):
        totp.generate("!!!!", 59)


def test_verify_non_ascii_code_is_a_mismatch():
    assert not totp.verify(RFC_SECRET, "２８７０８２", 59)


def test_provisioning_uri_shape():
    uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "alice@example.com", "MergeECommerce")
    parsed = urlparse(uri)
    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert unquote(parsed.path) == "/MergeECommerce:alice@example.com"
    query = parse_qs(parsed.query)
    assert query["secret"] == ["JBSWY3DPEHPK3PXP"]
    assert query["issuer"] == ["MergeECommerce"]
    assert "period" not in query


def test_provisioning_uri_non_default_period():
    uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "bob", "Shop", step_seconds=60)
    assert parse_qs(urlparse(uri).query)["period"] == ["60"]


@pytest.mark.parametrize(
    ("counter", "expected"),
    [(0, "755224"), (1, "287082"), (2, "359152"), (3, "969429"), (9, "520489")],
)
def test_hotp_rfc4226_vectors(counter, expected):
    assert totp.hotp(b"12345678901234567890", counter) == expected


def test_lenient_secret_is_normalized():
    messy = "jbsw y3dp-ehpk 3pxp=="
    assert totp.generate(messy, 59) == pyotp.TOTP("JBSWY3DPEHPK3PXP").at(59)
    assert totp.verify(messy, pyotp.TOTP("JBSWY3DPEHPK3PXP").at(59), 59)


def test_verify_matches_pyotp_window():
    secret = "JBSWY3DPEHPK3PXP"
    reference = pyotp.TOTP(secret)
    code = reference.at(1_700_000_000)
    for unix in (1_700_000_000 - 30, 1_700_000_000, 1_700_000_000 + 30):
        assert totp.verify(secret, code, unix) == reference.verify(code, for_time=unix, valid_window=1)
