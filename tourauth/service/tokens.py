"""Compact HS256 access tokens.

Tokens are stateless: there is no revocation list. A token stops working
when it expires, when its subject disappears or is deactivated, or when the
subject changes password at or after the token's ``iat``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from tourauth.logging import get_logger
from tourauth.storage.models import utcnow

logger = get_logger(__name__)


class TokenInvalid(Exception):
    """Opaque verification failure; ``reason`` is for logs only."""

    def __init__(self, reason: str) -> None:
        super().__init__("invalid token")
        self.reason = reason


@dataclass(frozen=True)
class AccessClaims:
    subject_id: str
    issued_at: datetime
    expires_at: datetime


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


class TokenCodec:
    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        ttl: timedelta = timedelta(days=90),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.ttl = ttl
        self._clock = clock

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(
        self,
        subject_id: str,
        expires_at: Optional[datetime] = None,
        *,
        not_before: Optional[datetime] = None,
    ) -> str:
        """Sign a token for ``subject_id``.

        ``not_before`` forces ``iat`` to be strictly later than the given
        instant, so a token minted right after a password change survives
        the staleness check even if the clock has not advanced.
        """
        issued_at = self._clock()
        if not_before is not None and issued_at <= not_before:
            issued_at = not_before + timedelta(microseconds=1)
        expires_at = expires_at or issued_at + self.ttl
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": subject_id,
            "iat": round(issued_at.timestamp(), 6),
            "exp": round(expires_at.timestamp(), 6),
            "jti": str(uuid.uuid4()),
        }
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str) -> AccessClaims:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise TokenInvalid("malformed")

        # Reject anything but HS256 to avoid algorithm confusion
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            raise TokenInvalid("malformed")
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            raise TokenInvalid("bad_algorithm")

        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            raise TokenInvalid("bad_signature")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError):
            raise TokenInvalid("malformed")
        if not isinstance(payload, dict):
            raise TokenInvalid("malformed")

        if payload.get("iss") != self.issuer:
            raise TokenInvalid("bad_claims")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        subject = payload.get("sub")
        if not valid_aud or not isinstance(subject, str) or not subject:
            raise TokenInvalid("bad_claims")
        try:
            issued_at = _from_timestamp(payload["iat"])
            expires_at = _from_timestamp(payload["exp"])
        except (KeyError, TypeError, ValueError, OverflowError):
            raise TokenInvalid("bad_claims")

        if self._clock() >= expires_at:
            raise TokenInvalid("expired")
        return AccessClaims(subject_id=subject, issued_at=issued_at, expires_at=expires_at)
