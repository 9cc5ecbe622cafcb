"""RFC-4648 Base32 without padding, with lenient decoding.

Decoding skips anything outside the alphabet so secrets typed with spaces
or hyphens ("JBSW Y3DP ...") still decode. Malformed input never raises; it
yields a shorter (possibly empty) key instead.
"""

from __future__ import annotations

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"


def encode(data: bytes) -> str:
    """Encode bytes as uppercase, unpadded Base32."""
    out: list[str] = []
    buffer = 0
    bits = 0
    for byte in data:
        buffer = (buffer << 8) | byte
        bits += 8
        while bits >= 5:
            out.append(ALPHABET[(buffer >> (bits - 5)) & 0x1F])
            bits -= 5
        buffer &= (1 << bits) - 1
    if bits:
        # Right-pad the final partial group with zero bits
        out.append(ALPHABET[(buffer << (5 - bits)) & 0x1F])
    return "".join(out)


def decode(text: str) -> bytes:
    """Decode Base32 text, ignoring case and non-alphabet characters.

    Trailing bits that do not complete a byte are dropped.
    """
    out = bytearray()
    buffer = 0
    bits = 0
    for ch in text.upper():
        value = ALPHABET.find(ch)
        if value < 0:
            continue
        buffer = ((buffer << 5) | value) & 0xFFFF
        bits += 5
        if bits >= 8:
            out.append((buffer >> (bits - 8)) & 0xFF)
            bits -= 8
    return bytes(out)
