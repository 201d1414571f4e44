"""
Cookie token envelope: the fixed hex layout written by the token cipher.

Layout (hex, lowercase on write, case-insensitive on read):

    [iv (12 bytes, 24 chars)][auth tag (16 bytes, 32 chars)][ciphertext (rest)]

No separators: iv and tag are fixed width, ciphertext consumes the remainder.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

IV_BYTES = 12
TAG_BYTES = 16
IV_HEX_LEN = IV_BYTES * 2
TAG_HEX_LEN = TAG_BYTES * 2
HEADER_HEX_LEN = IV_HEX_LEN + TAG_HEX_LEN  # 56

_HEX_RE = re.compile(r"[0-9a-fA-F]+")


class TokenCipherError(RuntimeError):
    pass


class EnvelopeFormatError(TokenCipherError):
    pass


def is_envelope(value: str | None) -> bool:
    """
    Legacy detection policy: does `value` look like one of our envelopes?

    True iff it is longer than the iv+tag header and all-hex. Raw tokens issued
    before cookie encryption existed are passed through untouched by readers.
    An all-hex raw token longer than 56 chars is misclassified (and then fails
    decryption); that is accepted.
    """
    if not value or len(value) <= HEADER_HEX_LEN:
        return False
    return _HEX_RE.fullmatch(value) is not None


@dataclass(frozen=True, slots=True)
class Envelope:
    iv: bytes
    tag: bytes
    ciphertext: bytes

    def __post_init__(self) -> None:
        if len(self.iv) != IV_BYTES:
            raise EnvelopeFormatError(f"iv must be {IV_BYTES} bytes")
        if len(self.tag) != TAG_BYTES:
            raise EnvelopeFormatError(f"auth tag must be {TAG_BYTES} bytes")

    @classmethod
    def from_aead(cls, iv: bytes, sealed: bytes) -> Envelope:
        # AESGCM returns ciphertext||tag; the envelope stores the tag first.
        if len(sealed) < TAG_BYTES:
            raise EnvelopeFormatError("sealed payload shorter than auth tag")
        return cls(iv=iv, tag=sealed[-TAG_BYTES:], ciphertext=sealed[:-TAG_BYTES])

    def aead_payload(self) -> bytes:
        return self.ciphertext + self.tag

    def to_hex(self) -> str:
        return self.iv.hex() + self.tag.hex() + self.ciphertext.hex()

    @classmethod
    def parse(cls, value: str) -> Envelope:
        v = str(value or "")
        if len(v) <= HEADER_HEX_LEN:
            raise EnvelopeFormatError("envelope too short")
        if _HEX_RE.fullmatch(v) is None:
            raise EnvelopeFormatError("envelope is not hex")
        if len(v) % 2:
            raise EnvelopeFormatError("envelope has odd length")
        return cls(
            iv=bytes.fromhex(v[:IV_HEX_LEN]),
            tag=bytes.fromhex(v[IV_HEX_LEN:HEADER_HEX_LEN]),
            ciphertext=bytes.fromhex(v[HEADER_HEX_LEN:]),
        )
