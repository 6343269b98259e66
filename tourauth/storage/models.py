from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Closed set of account roles used for authorization."""

    USER = "user"
    GUIDE = "guide"
    LEAD_GUIDE = "lead-guide"
    ADMIN = "admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    id: str
    name: str
    email: str
    password_hash: str
    role: Role = Role.USER
    password_changed_at: Optional[datetime] = None
    email_confirmed: bool = False
    confirm_token_hash: Optional[str] = None
    confirm_token_expires_at: Optional[datetime] = None
    reset_token_hash: Optional[str] = None
    reset_token_expires_at: Optional[datetime] = None
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    @property
    def has_pending_confirmation(self) -> bool:
        return not self.email_confirmed and self.confirm_token_hash is not None

    def confirmation_valid_at(self, now: datetime) -> bool:
        return (
            self.confirm_token_hash is not None
            and self.confirm_token_expires_at is not None
            and self.confirm_token_expires_at > now
        )

    def password_changed_after(self, issued_at: datetime) -> bool:
        """True when the password changed at or after ``issued_at``."""
        if self.password_changed_at is None:
            return False
        return issued_at <= self.password_changed_at

    def public_dict(self) -> Dict[str, Any]:
        # Credential material and token hashes never leave the service.
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "email_confirmed": self.email_confirmed,
            "active": self.active,
            "created_at": self.created_at,
        }


ACCOUNT_FIELDS = frozenset(f.name for f in fields(Account))
MUTABLE_ACCOUNT_FIELDS = ACCOUNT_FIELDS - {"id", "created_at"}
