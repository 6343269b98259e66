"""Storage contract shared by the memory and postgres account stores.

Inactive (soft-deleted) accounts are hidden from every lookup unless the
caller passes ``include_inactive=True``; the filter is part of the contract
rather than a side effect of the backend.
"""

from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from tourauth.storage.errors import ConstraintViolation
from tourauth.storage.models import MUTABLE_ACCOUNT_FIELDS, Account, Role


class AccountStore(Protocol):
    def create_account(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        role: Role = Role.USER,
        email_confirmed: bool = False,
        confirm_token_hash: Optional[str] = None,
        confirm_token_expires_at: Optional[datetime] = None,
    ) -> Account: ...

    def get_account(
        self, account_id: str, *, include_inactive: bool = False
    ) -> Optional[Account]: ...

    def get_account_by_email(
        self, email: str, *, include_inactive: bool = False
    ) -> Optional[Account]: ...

    def find_account_by_confirm_token(
        self, token_hash: str, *, now: datetime
    ) -> Optional[Account]: ...

    def find_account_by_reset_token(
        self, token_hash: str, *, now: datetime
    ) -> Optional[Account]: ...

    def update_account(self, account_id: str, **changes: Any) -> Optional[Account]: ...

    def delete_account(self, account_id: str) -> bool: ...

    def list_accounts(
        self,
        *,
        role: Optional[Role] = None,
        include_inactive: bool = False,
        limit: int = 100,
    ) -> List[Account]: ...


def normalize_email(email: str) -> str:
    """Case-fold an address the same way on write and on lookup."""
    return unicodedata.normalize("NFKC", email.strip()).lower()


def validate_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(changes) - MUTABLE_ACCOUNT_FIELDS
    if unknown:
        raise ConstraintViolation(
            "unknown account fields", {"fields": sorted(unknown)}
        )
    cleaned = dict(changes)
    if "email" in cleaned:
        cleaned["email"] = normalize_email(cleaned["email"])
    if "role" in cleaned:
        cleaned["role"] = Role(cleaned["role"])
    return cleaned


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = ["AccountStore", "normalize_email", "validate_changes", "ensure_aware"]
