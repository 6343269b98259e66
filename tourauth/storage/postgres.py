from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional

from psycopg import Connection, errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from tourauth.logging import get_logger
from tourauth.storage.common import ensure_aware, normalize_email, validate_changes
from tourauth.storage.errors import ConstraintViolation, StoreUnavailable
from tourauth.storage.models import Account, Role

logger = get_logger(__name__)

_ACCOUNT_DDL = """
CREATE TABLE IF NOT EXISTS account (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user'
        CHECK (role IN ('user', 'guide', 'lead-guide', 'admin')),
    password_changed_at TIMESTAMPTZ,
    email_confirmed BOOLEAN NOT NULL DEFAULT false,
    confirm_token_hash TEXT,
    confirm_token_expires_at TIMESTAMPTZ,
    reset_token_hash TEXT,
    reset_token_expires_at TIMESTAMPTZ,
    active BOOLEAN NOT NULL DEFAULT true,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_ACCOUNT_INDEXES = (
    "CREATE INDEX IF NOT EXISTS account_confirm_token_idx ON account (confirm_token_hash)",
    "CREATE INDEX IF NOT EXISTS account_reset_token_idx ON account (reset_token_hash)",
)


def _row_to_account(row: dict) -> Account:
    return Account(
        id=str(row["id"]),
        name=row.get("name") or "",
        email=row["email"],
        password_hash=row["password_hash"],
        role=Role(row.get("role") or Role.USER.value),
        password_changed_at=ensure_aware(row.get("password_changed_at")),
        email_confirmed=bool(row.get("email_confirmed", False)),
        confirm_token_hash=row.get("confirm_token_hash"),
        confirm_token_expires_at=ensure_aware(row.get("confirm_token_expires_at")),
        reset_token_hash=row.get("reset_token_hash"),
        reset_token_expires_at=ensure_aware(row.get("reset_token_expires_at")),
        active=bool(row.get("active", True)),
        created_at=ensure_aware(row.get("created_at")),
    )


class PostgresStore:
    """Postgres-backed account store. Every call is a single-row statement."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": True},
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Borrow a pooled connection; lost or exhausted connections surface
        as ``StoreUnavailable``."""
        try:
            with self.pool.connection() as conn:
                yield conn
        except (PoolTimeout, errors.OperationalError) as exc:
            logger.error(
                "postgres_unavailable", error_type=type(exc).__name__, error=str(exc)
            )
            raise StoreUnavailable(f"account store unreachable: {exc}") from exc

    def _ensure_schema(self) -> None:
        """Create the ``account`` table and token indexes if they are missing."""

        with self._connect() as conn:
            conn.execute(_ACCOUNT_DDL)
            for statement in _ACCOUNT_INDEXES:
                conn.execute(statement)

    def close(self) -> None:
        self.pool.close()

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
        account_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO account (
                        id, name, email, password_hash, role, email_confirmed,
                        confirm_token_hash, confirm_token_expires_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        account_id,
                        name,
                        normalize_email(email),
                        password_hash,
                        Role(role).value,
                        email_confirmed,
                        confirm_token_hash,
                        confirm_token_expires_at,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return _row_to_account(row)

    def get_account(
        self, account_id: str, *, include_inactive: bool = False
    ) -> Optional[Account]:
        query = "SELECT * FROM account WHERE id = %s"
        if not include_inactive:
            query += " AND active"
        with self._connect() as conn:
            row = conn.execute(query, (account_id,)).fetchone()
        return _row_to_account(row) if row else None

    def get_account_by_email(
        self, email: str, *, include_inactive: bool = False
    ) -> Optional[Account]:
        query = "SELECT * FROM account WHERE email = %s"
        if not include_inactive:
            query += " AND active"
        with self._connect() as conn:
            row = conn.execute(query, (normalize_email(email),)).fetchone()
        return _row_to_account(row) if row else None

    def find_account_by_confirm_token(
        self, token_hash: str, *, now: datetime
    ) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM account
                WHERE confirm_token_hash = %s AND confirm_token_expires_at > %s AND active
                """,
                (token_hash, now),
            ).fetchone()
        return _row_to_account(row) if row else None

    def find_account_by_reset_token(
        self, token_hash: str, *, now: datetime
    ) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM account
                WHERE reset_token_hash = %s AND reset_token_expires_at > %s AND active
                """,
                (token_hash, now),
            ).fetchone()
        return _row_to_account(row) if row else None

    def update_account(self, account_id: str, **changes: Any) -> Optional[Account]:
        cleaned = validate_changes(changes)
        if not cleaned:
            return self.get_account(account_id, include_inactive=True)
        if "role" in cleaned:
            cleaned["role"] = cleaned["role"].value
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in cleaned
        )
        statement = sql.SQL("UPDATE account SET {} WHERE id = %s RETURNING *").format(
            assignments
        )
        try:
            with self._connect() as conn:
                row = conn.execute(
                    statement, (*cleaned.values(), account_id)
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return _row_to_account(row) if row else None

    def delete_account(self, account_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM account WHERE id = %s", (account_id,))
            return result.rowcount > 0

    def list_accounts(
        self,
        *,
        role: Optional[Role] = None,
        include_inactive: bool = False,
        limit: int = 100,
    ) -> List[Account]:
        clauses = []
        params: list[Any] = []
        if not include_inactive:
            clauses.append("active")
        if role is not None:
            clauses.append("role = %s")
            params.append(Role(role).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM account {where} ORDER BY created_at DESC LIMIT %s",
                params,
            ).fetchall()
        return [_row_to_account(row) for row in rows]
