"""Account lifecycle: signup, confirmation, login, password flows and
deactivation.

States are ``unconfirmed`` (active, ``email_confirmed`` false),
``confirmed`` (active, confirmed) and ``deactivated`` (inactive). Every
transition touches exactly one account record. Transitions that also send
mail persist first, dispatch second and compensate if the mail fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from tourauth.logging import get_logger
from tourauth.service.errors import (
    BadRequestError,
    ConfirmationPendingError,
    DuplicateEmailError,
    EmailNotConfirmedError,
    InvalidCredentialsError,
    NoSuchUserError,
    NotFoundError,
    SamePasswordError,
    TokenInvalidOrExpiredError,
)
from tourauth.service.notifications import NotificationDispatcher
from tourauth.service.passwords import PasswordHasher
from tourauth.service.secure_tokens import SecureTokenGenerator, hash_token
from tourauth.service.tokens import TokenCodec
from tourauth.storage.common import AccountStore, normalize_email
from tourauth.storage.errors import ConstraintViolation
from tourauth.storage.models import Account, Role, utcnow

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


@dataclass(frozen=True)
class PendingConfirmation:
    """Signup acknowledgement; the account cannot log in yet."""

    account_id: str
    email: str
    expires_at: datetime


@dataclass(frozen=True)
class AccessGrant:
    account: Account
    token: str


def _require(**fields: Optional[str]) -> None:
    missing = sorted(name for name, value in fields.items() if not value)
    if missing:
        raise BadRequestError(
            f"please provide {', '.join(missing)}", detail={"missing": missing}
        )


def check_new_password(password: str, confirmation: Optional[str]) -> None:
    """Precondition shared by every flow that sets a password."""
    if password != confirmation:
        raise BadRequestError(
            "passwords are not the same", detail={"field": "password_confirm"}
        )
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters",
            detail={"field": "password"},
        )
    if len(password) > MAX_PASSWORD_LENGTH:
        raise BadRequestError(
            f"password must be at most {MAX_PASSWORD_LENGTH} characters",
            detail={"field": "password"},
        )


class AccountLifecycle:
    def __init__(
        self,
        store: AccountStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        tokens: SecureTokenGenerator,
        notifier: NotificationDispatcher,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.tokens = tokens
        self.notifier = notifier
        self._clock = clock

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(self.hasher.hash, password)

    async def _verify(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self.hasher.verify, password, password_hash)

    def _grant(self, account: Account) -> AccessGrant:
        return AccessGrant(
            account=account,
            token=self.codec.issue(account.id, not_before=account.password_changed_at),
        )

    async def _store_new_password(self, account: Account, password: str, **extra) -> Account:
        password_hash = await self._hash(password)
        updated = self.store.update_account(
            account.id,
            password_hash=password_hash,
            password_changed_at=self._clock(),
            **extra,
        )
        if updated is None:
            raise NotFoundError("account no longer exists")
        return updated

    async def signup(
        self,
        *,
        name: Optional[str],
        email: Optional[str],
        password: Optional[str],
        password_confirm: Optional[str],
        role: Optional[Role | str] = None,
    ) -> PendingConfirmation:
        _require(name=name, email=email, password=password)
        check_new_password(password, password_confirm)
        try:
            requested = Role(role) if role else Role.USER
        except ValueError:
            raise BadRequestError(
                "unknown role", detail={"allowed": [r.value for r in Role]}
            )
        if requested == Role.ADMIN:
            logger.warning("signup_admin_role_coerced")
            requested = Role.USER

        now = self._clock()
        existing = self.store.get_account_by_email(email, include_inactive=True)
        if existing is not None:
            if not existing.has_pending_confirmation:
                raise DuplicateEmailError()
            if existing.confirmation_valid_at(now):
                raise ConfirmationPendingError()
            # Unconfirmed and expired: the address is free again
            self.store.delete_account(existing.id)
            logger.info("signup_expired_account_purged", account_id=existing.id)

        password_hash = await self._hash(password)
        confirmation = self.tokens.generate()
        try:
            account = self.store.create_account(
                name=name.strip(),
                email=email,
                password_hash=password_hash,
                role=requested,
                email_confirmed=False,
                confirm_token_hash=confirmation.token_hash,
                confirm_token_expires_at=confirmation.expires_at,
            )
        except ConstraintViolation:
            # Lost a race with a concurrent signup for the same address
            raise DuplicateEmailError()

        await self.notifier.send_confirmation(
            account,
            confirmation.plaintext,
            rollback=lambda: self.store.delete_account(account.id),
        )
        logger.info("account_signup_pending", account_id=account.id, role=account.role.value)
        return PendingConfirmation(
            account_id=account.id,
            email=account.email,
            expires_at=confirmation.expires_at,
        )

    async def confirm_email(self, raw_token: str) -> AccessGrant:
        account = None
        if raw_token:
            account = self.store.find_account_by_confirm_token(
                hash_token(raw_token), now=self._clock()
            )
        if account is None:
            logger.warning("confirm_email_token_rejected")
            raise TokenInvalidOrExpiredError(
                "confirmation token is invalid or has expired, please sign up again"
            )
        confirmed = self.store.update_account(
            account.id,
            email_confirmed=True,
            confirm_token_hash=None,
            confirm_token_expires_at=None,
        )
        if confirmed is None:
            raise TokenInvalidOrExpiredError()
        logger.info("account_email_confirmed", account_id=confirmed.id)
        return self._grant(confirmed)

    async def login(self, *, email: Optional[str], password: Optional[str]) -> AccessGrant:
        _require(email=email, password=password)
        account = self.store.get_account_by_email(email)
        if account is None or not await self._verify(password, account.password_hash):
            logger.info("login_failed")
            raise InvalidCredentialsError()
        if not account.email_confirmed:
            raise EmailNotConfirmedError()
        if self.hasher.needs_rehash(account.password_hash):
            # Cost parameters changed since this hash was written
            rehashed = await self._hash(password)
            account = self.store.update_account(account.id, password_hash=rehashed) or account
            logger.info("password_rehashed", account_id=account.id)
        logger.info("login_succeeded", account_id=account.id)
        return self._grant(account)

    async def forgot_password(self, *, email: Optional[str]) -> None:
        _require(email=email)
        account = self.store.get_account_by_email(email)
        if account is None:
            raise NoSuchUserError()
        reset = self.tokens.generate()
        self.store.update_account(
            account.id,
            reset_token_hash=reset.token_hash,
            reset_token_expires_at=reset.expires_at,
        )
        await self.notifier.send_password_reset(
            account,
            reset.plaintext,
            rollback=lambda: self.store.update_account(
                account.id, reset_token_hash=None, reset_token_expires_at=None
            ),
        )
        logger.info("password_reset_requested", account_id=account.id)

    async def reset_password(
        self,
        raw_token: str,
        *,
        password: Optional[str],
        password_confirm: Optional[str],
    ) -> AccessGrant:
        account = None
        if raw_token:
            account = self.store.find_account_by_reset_token(
                hash_token(raw_token), now=self._clock()
            )
        if account is None:
            logger.warning("reset_password_token_rejected")
            raise TokenInvalidOrExpiredError()
        _require(password=password)
        check_new_password(password, password_confirm)
        updated = await self._store_new_password(
            account, password, reset_token_hash=None, reset_token_expires_at=None
        )
        logger.info("password_reset_completed", account_id=updated.id)
        return self._grant(updated)

    async def update_password(
        self,
        account: Account,
        *,
        current_password: Optional[str],
        new_password: Optional[str],
        new_password_confirm: Optional[str],
    ) -> AccessGrant:
        _require(current_password=current_password, new_password=new_password)
        if not await self._verify(current_password, account.password_hash):
            raise InvalidCredentialsError("incorrect password")
        if new_password == current_password:
            raise SamePasswordError()
        check_new_password(new_password, new_password_confirm)
        updated = await self._store_new_password(account, new_password)
        logger.info("password_updated", account_id=updated.id)
        return self._grant(updated)

    async def update_profile(
        self,
        account: Account,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Account:
        changes = {}
        if name is not None and name.strip():
            changes["name"] = name.strip()
        if email is not None and email.strip():
            changes["email"] = normalize_email(email)
        if not changes:
            raise BadRequestError("nothing to update", detail={"fields": ["name", "email"]})
        if "email" in changes and changes["email"] != account.email:
            taken = self.store.get_account_by_email(changes["email"], include_inactive=True)
            if taken is not None:
                raise DuplicateEmailError()
        try:
            updated = self.store.update_account(account.id, **changes)
        except ConstraintViolation:
            raise DuplicateEmailError()
        if updated is None:
            raise NotFoundError("account no longer exists")
        logger.info("profile_updated", account_id=updated.id, fields=sorted(changes))
        return updated

    async def deactivate(self, account: Account, *, password: Optional[str]) -> None:
        _require(password=password)
        if not await self._verify(password, account.password_hash):
            raise InvalidCredentialsError("incorrect password")
        self.store.update_account(account.id, active=False, email_confirmed=False)
        logger.info("account_deactivated", account_id=account.id)

    async def reactivate(
        self, *, email: Optional[str], password: Optional[str]
    ) -> AccessGrant:
        """Bring a deactivated account back by presenting its password.

        The record is flipped to active before the password is checked and
        flipped back on mismatch. Two concurrent attempts for one address can
        interleave so that a wrong-password revert lands after a successful
        reactivation; this is a known gap.

        Accounts that were deactivated while a confirmation link was still
        outstanding stay inactive; only the link confirms an address.
        """
        _require(email=email, password=password)
        account = self.store.get_account_by_email(email, include_inactive=True)
        if account is None:
            raise InvalidCredentialsError()
        if account.active:
            # Nothing to reactivate, behave exactly like login
            return await self.login(email=email, password=password)

        if account.has_pending_confirmation:
            if not await self._verify(password, account.password_hash):
                raise InvalidCredentialsError()
            logger.info("reactivation_refused_unconfirmed", account_id=account.id)
            raise EmailNotConfirmedError()

        self.store.update_account(account.id, active=True)
        if not await self._verify(password, account.password_hash):
            self.store.update_account(account.id, active=False)
            logger.info("reactivation_failed", account_id=account.id)
            raise InvalidCredentialsError()
        restored = self.store.update_account(account.id, email_confirmed=True)
        if restored is None:
            raise InvalidCredentialsError()
        logger.info("account_reactivated", account_id=restored.id)
        return self._grant(restored)
