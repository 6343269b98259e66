from __future__ import annotations

import json
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tourauth.logging import get_logger
from tourauth.storage.common import ensure_aware, normalize_email, validate_changes
from tourauth.storage.errors import ConstraintViolation
from tourauth.storage.models import Account, Role, utcnow

_DATETIME_FIELDS = (
    "password_changed_at",
    "confirm_token_expires_at",
    "reset_token_expires_at",
    "created_at",
)


class MemoryStore:
    """In-memory account store with a JSON snapshot for restarts."""

    def __init__(self, fs_root: str = "/tmp/tourauth", *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        # RLock so helpers can re-enter from locked public methods
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.persist = persist
        if self.persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "accounts.json"

    @staticmethod
    def _visible(account: Account, include_inactive: bool) -> bool:
        return include_inactive or account.active

    def _email_taken(self, email: str, *, exclude_id: Optional[str] = None) -> bool:
        return any(
            existing.email == email and existing.id != exclude_id
            for existing in self.accounts.values()
        )

    # accounts
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
    ) -> Account:
        normalized = normalize_email(email)
        with self._data_lock:
            if self._email_taken(normalized):
                raise ConstraintViolation("email already exists", {"field": "email"})
            account = Account(
                id=str(uuid.uuid4()),
                name=name,
                email=normalized,
                password_hash=password_hash,
                role=Role(role),
                email_confirmed=email_confirmed,
                confirm_token_hash=confirm_token_hash,
                confirm_token_expires_at=confirm_token_expires_at,
            )
            self._commit({**self.accounts, account.id: account})
            return replace(account)

    def get_account(
        self, account_id: str, *, include_inactive: bool = False
    ) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account or not self._visible(account, include_inactive):
                return None
            return replace(account)

    def get_account_by_email(
        self, email: str, *, include_inactive: bool = False
    ) -> Optional[Account]:
        normalized = normalize_email(email)
        with self._data_lock:
            for account in self.accounts.values():
                if account.email == normalized and self._visible(account, include_inactive):
                    return replace(account)
            return None

    def find_account_by_confirm_token(
        self, token_hash: str, *, now: datetime
    ) -> Optional[Account]:
        with self._data_lock:
            for account in self.accounts.values():
                if (
                    account.active
                    and account.confirm_token_hash == token_hash
                    and account.confirm_token_expires_at is not None
                    and account.confirm_token_expires_at > now
                ):
                    return replace(account)
            return None

    def find_account_by_reset_token(
        self, token_hash: str, *, now: datetime
    ) -> Optional[Account]:
        with self._data_lock:
            for account in self.accounts.values():
                if (
                    account.active
                    and account.reset_token_hash == token_hash
                    and account.reset_token_expires_at is not None
                    and account.reset_token_expires_at > now
                ):
                    return replace(account)
            return None

    def update_account(self, account_id: str, **changes: Any) -> Optional[Account]:
        cleaned = validate_changes(changes)
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            if "email" in cleaned and self._email_taken(
                cleaned["email"], exclude_id=account_id
            ):
                raise ConstraintViolation("email already exists", {"field": "email"})
            updated = replace(account, **cleaned)
            self._commit({**self.accounts, account_id: updated})
            return replace(updated)

    def delete_account(self, account_id: str) -> bool:
        with self._data_lock:
            if account_id not in self.accounts:
                return False
            self._commit(
                {key: value for key, value in self.accounts.items() if key != account_id}
            )
            return True

    def list_accounts(
        self,
        *,
        role: Optional[Role] = None,
        include_inactive: bool = False,
        limit: int = 100,
    ) -> List[Account]:
        with self._data_lock:
            results = [
                replace(a)
                for a in self.accounts.values()
                if self._visible(a, include_inactive) and (role is None or a.role == role)
            ]
        return sorted(results, key=lambda a: a.created_at, reverse=True)[:limit]

    # snapshot
    @staticmethod
    def _serialize_account(account: Account) -> dict:
        data = {
            "id": account.id,
            "name": account.name,
            "email": account.email,
            "password_hash": account.password_hash,
            "role": account.role.value,
            "email_confirmed": account.email_confirmed,
            "confirm_token_hash": account.confirm_token_hash,
            "reset_token_hash": account.reset_token_hash,
            "active": account.active,
        }
        for name in _DATETIME_FIELDS:
            value = getattr(account, name)
            data[name] = value.isoformat() if value else None
        return data

    @staticmethod
    def _deserialize_account(data: dict) -> Account:
        parsed = {
            name: ensure_aware(datetime.fromisoformat(data[name])) if data.get(name) else None
            for name in _DATETIME_FIELDS
        }
        return Account(
            id=data["id"],
            name=data.get("name", ""),
            email=data["email"],
            password_hash=data["password_hash"],
            role=Role(data.get("role", Role.USER.value)),
            email_confirmed=bool(data.get("email_confirmed", False)),
            confirm_token_hash=data.get("confirm_token_hash"),
            reset_token_hash=data.get("reset_token_hash"),
            active=bool(data.get("active", True)),
            password_changed_at=parsed["password_changed_at"],
            confirm_token_expires_at=parsed["confirm_token_expires_at"],
            reset_token_expires_at=parsed["reset_token_expires_at"],
            created_at=parsed["created_at"] or utcnow(),
        )

    def _commit(self, accounts: Dict[str, Account]) -> None:
        # Snapshot first; a failed write leaves the live state untouched
        self._persist_state(accounts)
        self.accounts = accounts

    def _persist_state(self, accounts: Dict[str, Account]) -> None:
        if not self.persist:
            return
        state = {"accounts": [self._serialize_account(a) for a in accounts.values()]}
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.accounts = {
            entry["id"]: self._deserialize_account(entry)
            for entry in data.get("accounts", [])
        }
        self.logger.info("memory_store_loaded", accounts=len(self.accounts))
        return True
