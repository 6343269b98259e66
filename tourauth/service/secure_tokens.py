from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from tourauth.storage.models import utcnow


def hash_token(plaintext: str) -> str:
    """One-way digest stored in place of an emailed token."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SecureToken:
    plaintext: str
    token_hash: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"SecureToken(token_hash={self.token_hash[:8]}..., expires_at={self.expires_at.isoformat()})"


class SecureTokenGenerator:
    """Single-use tokens for email confirmation and password reset."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl = ttl
        self._clock = clock

    def generate(self) -> SecureToken:
        plaintext = secrets.token_hex(32)
        return SecureToken(
            plaintext=plaintext,
            token_hash=hash_token(plaintext),
            expires_at=self._clock() + self.ttl,
        )
