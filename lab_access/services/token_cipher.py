"""Authenticated encryption for Slack tokens stored at rest.

Ciphertexts are four colon-separated hex segments ``aad:iv:tag:ciphertext``.
The AAD segment is a fixed context label; it is not secret but is bound into
the GCM tag, so a ciphertext minted for another purpose cannot be replayed
as a Slack token.
"""

from __future__ import annotations

import binascii
import hashlib
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

SLACK_TOKEN_AAD = b"slack-token"
IV_LENGTH = 16
TAG_LENGTH = 16

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class TokenCipherError(ValueError):
    """Base class for every decryption failure."""


class MalformedCiphertext(TokenCipherError):
    """The stored value is not in ``aad:iv:tag:ciphertext`` form."""


class ContextMismatch(TokenCipherError):
    """The AAD segment names a context other than the expected one."""


class AuthenticationFailed(TokenCipherError):
    """The GCM tag did not verify: tampered data or a different key."""


def derive_key(secret: str) -> bytes:
    """Return a 32-byte AES key from configuration.

    A 64-character hex string is taken as the raw key; anything else is
    stretched with SHA-256.
    """
    if not secret:
        raise ValueError("Token encryption key must be provided.")
    if _HEX_KEY.match(secret):
        return bytes.fromhex(secret)
    return hashlib.sha256(secret.encode("utf-8")).digest()


class TokenCipherService:
    """Encrypt and decrypt Slack access tokens with AES-256-GCM."""

    def __init__(self, *, secret: str, aad: bytes = SLACK_TOKEN_AAD) -> None:
        self._aesgcm = AESGCM(derive_key(secret))
        self._aad = aad

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the 4-segment ciphertext."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), self._aad)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ":".join(part.hex() for part in (self._aad, iv, tag, ciphertext))

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a 4-segment ciphertext and return the plaintext."""
        parts = encrypted.split(":")
        if len(parts) != 4:
            raise MalformedCiphertext(
                f"Expected 4 ciphertext segments, got {len(parts)}."
            )
        if parts[0].lower() != self._aad.hex():
            raise ContextMismatch("Ciphertext was not produced for a Slack token.")
        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts[1:])
        except (ValueError, binascii.Error) as exc:
            raise MalformedCiphertext("Ciphertext segments must be hex encoded.") from exc
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise MalformedCiphertext("Ciphertext header has an invalid length.")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, self._aad)
        except InvalidTag as exc:
            raise AuthenticationFailed(
                "Failed to decrypt token; authentication tag mismatch."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = [
    "AuthenticationFailed",
    "ContextMismatch",
    "MalformedCiphertext",
    "SLACK_TOKEN_AAD",
    "TokenCipherError",
    "TokenCipherService",
    "derive_key",
]
