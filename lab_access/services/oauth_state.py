"""
Signed, time-limited OAuth ``state`` values.

The token is self-verifying, so nothing is stored server side::

    base64( '{"nonce":..,"timestamp":..}' + "." + hex(hmac_sha256(payload)) )
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import secrets
import time
from hashlib import sha256
from typing import Any, Callable, Dict, Optional

STATE_EXPIRY_SECONDS = 600
NONCE_BYTES = 16


class OAuthStateService:
    """Issue and verify anti-CSRF state tokens for the Slack login popup."""

    def __init__(
        self,
        secret_key: str,
        *,
        clock: Callable[[], float] = time.time,
        expiry_seconds: int = STATE_EXPIRY_SECONDS,
    ) -> None:
        if not secret_key:
            raise ValueError("OAuth state secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")
        self._clock = clock
        self._expiry_seconds = expiry_seconds

    @property
    def expires_in(self) -> int:
        return self._expiry_seconds

    def _sign(self, payload: bytes) -> str:
        return hmac.new(self._secret_key, payload, sha256).hexdigest()

    def generate(self) -> str:
        payload = json.dumps(
            {"timestamp": int(self._clock()), "nonce": secrets.token_hex(NONCE_BYTES)},
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")
        token = payload + b"." + self._sign(payload).encode("ascii")
        return base64.b64encode(token).decode("ascii")

    def validate(self, token: str) -> bool:
        """Return True only for an authentic, unexpired token. Never raises."""
        try:
            payload, signature = self._split(token)
            expected = self._sign(payload)
            if not hmac.compare_digest(expected.encode("ascii"), signature):
                return False
            data = self._parse(payload)
            timestamp = int(data["timestamp"])
            if not data.get("nonce"):
                return False
        except Exception:  # noqa: BLE001 - every failure is an invalid token
            return False
        return self._clock() - timestamp <= self._expiry_seconds

    def is_expired(self, token: str) -> bool:
        """Diagnostic only; unparseable tokens count as expired."""
        issued = self.issued_at(token)
        if issued is None:
            return True
        return self._clock() - issued > self._expiry_seconds

    def issued_at(self, token: str) -> Optional[int]:
        """Diagnostic only; the signature is not checked here."""
        try:
            payload, _ = self._split(token)
            return int(self._parse(payload)["timestamp"])
        except Exception:  # noqa: BLE001
            return None

    @staticmethod
    def _split(token: str) -> tuple[bytes, bytes]:
        try:
            decoded = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise ValueError("State is not base64.") from exc
        payload, sep, signature = decoded.rpartition(b".")
        if not sep or not payload or not signature:
            raise ValueError("State is missing its signature.")
        return payload, signature

    @staticmethod
    def _parse(payload: bytes) -> Dict[str, Any]:
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("State payload must be an object.")
        return data


__all__ = ["NONCE_BYTES", "OAuthStateService", "STATE_EXPIRY_SECONDS"]
