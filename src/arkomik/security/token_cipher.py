"""
AES-256-GCM protection for identity-provider tokens stored in cookies.

The key is derived from the shared COOKIE_ENCRYPTION_KEY with scrypt and a fixed
salt, so every process holding the same secret derives the same key. Each
encryption uses a fresh random 12-byte IV. Output is an `Envelope` in hex.

Two calling conventions:
  - strict: `encrypt` / `decrypt_strict` raise `TokenCipherError` subclasses
  - tolerant: `seal` returns a `SealResult`; `decrypt` hands back its input
    unchanged on failure (legacy raw tokens keep working during migration)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from arkomik.config import get_settings
from arkomik.security.envelope import (
    IV_BYTES,
    Envelope,
    EnvelopeFormatError,
    TokenCipherError,
    is_envelope,
)
from arkomik.utils.log import logger

KEY_BYTES = 32
# Fixed salt: the secret is the confidentiality boundary; the salt only has to be stable.
KDF_SALT = b"salt"
KDF_N = 2**14
KDF_R = 8
KDF_P = 1


class TokenEncryptionError(TokenCipherError):
    pass


class TokenAuthenticationError(TokenCipherError):
    pass


@dataclass(frozen=True, slots=True)
class SealResult:
    ok: bool
    envelope: str | None = None
    reason: str | None = None


@lru_cache(maxsize=4)
def derive_key(secret: str) -> bytes:
    if not secret:
        raise TokenEncryptionError("cookie encryption secret is empty")
    kdf = Scrypt(salt=KDF_SALT, length=KEY_BYTES, n=KDF_N, r=KDF_R, p=KDF_P)
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, *, secret: str) -> str:
    """
    Encrypt `plaintext` into a hex envelope. Raises TokenEncryptionError.
    """
    if not plaintext:
        raise TokenEncryptionError("refusing to encrypt an empty token")
    try:
        key = derive_key(secret)
        iv = os.urandom(IV_BYTES)
        sealed = AESGCM(key).encrypt(iv, str(plaintext).encode("utf-8"), None)
        return Envelope.from_aead(iv, sealed).to_hex()
    except TokenEncryptionError:
        raise
    except Exception as ex:
        raise TokenEncryptionError(f"token encryption failed: {type(ex).__name__}") from ex


def seal(plaintext: str, *, secret: str) -> SealResult:
    try:
        return SealResult(ok=True, envelope=encrypt(plaintext, secret=secret))
    except TokenEncryptionError as ex:
        return SealResult(ok=False, reason=str(ex))


def decrypt_strict(envelope: str, *, secret: str) -> str:
    """
    Parse and authenticate an envelope.

    Raises EnvelopeFormatError for malformed input, TokenAuthenticationError when the
    tag does not verify (tampering or wrong secret) or the plaintext is not UTF-8.
    """
    env = Envelope.parse(envelope)
    key = derive_key(secret)
    try:
        pt = AESGCM(key).decrypt(env.iv, env.aead_payload(), None)
    except InvalidTag:
        raise TokenAuthenticationError("token failed authentication") from None
    try:
        return pt.decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        raise TokenAuthenticationError("decrypted token is not UTF-8") from None


def decrypt(value: str, *, secret: str) -> str:
    """
    Tolerant decrypt: returns `value` unchanged if it cannot be decrypted.

    Callers must not assume success; gate on `is_envelope` first and let the
    identity provider reject whatever comes back.
    """
    try:
        return decrypt_strict(value, secret=secret)
    except TokenCipherError as ex:
        logger.warning(
            "token.decrypt_failed",
            reason=type(ex).__name__,
            length=len(value or ""),
        )
        return value


# --- process-level helpers bound to the configured secret ---


def encrypt_token(plaintext: str) -> str:
    """
    Envelope for `plaintext` under the configured secret.

    On failure raises TokenEncryptionError, unless ALLOW_PLAINTEXT_TOKEN_FALLBACK=1,
    in which case the raw token is returned and the failure is logged.
    """
    s = get_settings()
    res = seal(plaintext, secret=s.cookie_secret())
    if res.ok and res.envelope is not None:
        return res.envelope
    if bool(s.allow_plaintext_token_fallback):
        logger.error("token.encrypt_failed_plaintext_fallback", reason=res.reason)
        return plaintext
    logger.error("token.encrypt_failed", reason=res.reason)
    raise TokenEncryptionError(res.reason or "token encryption failed")


def decrypt_token(value: str) -> str:
    return decrypt(value, secret=get_settings().cookie_secret())


def is_encrypted(value: str | None) -> bool:
    return is_envelope(value)


__all__ = [
    "EnvelopeFormatError",
    "SealResult",
    "TokenAuthenticationError",
    "TokenCipherError",
    "TokenEncryptionError",
    "decrypt",
    "decrypt_strict",
    "decrypt_token",
    "derive_key",
    "encrypt",
    "encrypt_token",
    "is_encrypted",
    "seal",
]
