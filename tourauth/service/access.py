from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from tourauth.logging import get_logger
from tourauth.service.errors import ForbiddenError, UnauthenticatedError
from tourauth.service.tokens import TokenCodec, TokenInvalid
from tourauth.storage.common import AccountStore
from tourauth.storage.models import Account, Role

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    account_id: str
    role: Role
    email: str
    token_issued_at: datetime
    account: Account


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


class AccessGuard:
    """Resolves a bearer token to an identity and checks role membership."""

    def __init__(self, store: AccountStore, codec: TokenCodec) -> None:
        self.store = store
        self.codec = codec

    def authenticate(
        self, authorization: Optional[str] = None, cookie_token: Optional[str] = None
    ) -> Identity:
        # Header wins over cookie when both are present
        token = extract_bearer(authorization) or cookie_token
        if not token:
            raise UnauthenticatedError()
        try:
            claims = self.codec.verify(token)
        except TokenInvalid as exc:
            logger.info("access_token_rejected", reason=exc.reason)
            raise UnauthenticatedError("invalid or expired token, please log in again")

        account = self.store.get_account(claims.subject_id)
        if account is None:
            logger.info("access_token_rejected", reason="unknown_subject")
            raise UnauthenticatedError("the account for this token no longer exists")
        if account.password_changed_after(claims.issued_at):
            logger.info("access_token_rejected", reason="stale", account_id=account.id)
            raise UnauthenticatedError("password was changed recently, please log in again")
        return Identity(
            account_id=account.id,
            role=account.role,
            email=account.email,
            token_issued_at=claims.issued_at,
            account=account,
        )

    @staticmethod
    def authorize(identity: Identity, roles: Iterable[Role | str]) -> Identity:
        allowed = {Role(role) for role in roles}
        if identity.role not in allowed:
            logger.info(
                "access_forbidden",
                account_id=identity.account_id,
                role=identity.role.value,
            )
            raise ForbiddenError()
        return identity
