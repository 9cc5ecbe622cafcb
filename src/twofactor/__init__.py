"""twofactor — TOTP, SMS and email two-factor authentication core."""

__version__ = "0.1.0"
