"""One-time password primitives: Base32, TOTP and CSPRNG generators."""
