from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, Path, Query, Request, Response

from tourauth.api.schemas import (
    AdminUpdateRequest,
    DeactivateRequest,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    PendingResponse,
    ReactivateRequest,
    ResetPasswordRequest,
    SignupRequest,
    StatusResponse,
    TokenResponse,
    UpdatePasswordRequest,
    UpdateProfileRequest,
    UserListResponse,
    UserResponse,
)
from tourauth.logging import get_logger
from tourauth.service.access import Identity
from tourauth.service.errors import BadRequestError, NotFoundError
from tourauth.service.lifecycle import AccessGrant
from tourauth.service.runtime import get_runtime
from tourauth.storage.models import Account, Role

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/users")

TOKEN_COOKIE = "jwt"


async def get_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
    jwt: Optional[str] = Cookie(None),
) -> Identity:
    runtime = get_runtime()
    identity = runtime.guard.authenticate(authorization, jwt)
    request.state.identity = identity
    return identity


def require_roles(*roles: Role):
    """Dependency factory: authenticate, then require one of ``roles``."""

    async def _dependency(identity: Identity = Depends(get_identity)) -> Identity:
        return get_runtime().guard.authorize(identity, roles)

    return _dependency


get_admin = require_roles(Role.ADMIN)


def _user(account: Account) -> UserResponse:
    return UserResponse(**account.public_dict())


def _apply_token_cookie(response: Response, token: str) -> None:
    settings = get_runtime().settings
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.jwt_cookie_expires_in_days * 24 * 60 * 60,
        path="/",
    )


def _clear_token_cookie(response: Response) -> None:
    settings = get_runtime().settings
    response.delete_cookie(
        TOKEN_COOKIE, path="/", secure=settings.is_production, httponly=True, samesite="lax"
    )


def _grant_response(response: Response, grant: AccessGrant) -> Envelope:
    _apply_token_cookie(response, grant.token)
    return Envelope(
        status="ok", data=TokenResponse(token=grant.token, user=_user(grant.account))
    )


@router.post("/signup", response_model=Envelope, status_code=202, tags=["auth"])
async def signup(body: SignupRequest):
    """Register an unconfirmed account and email a confirmation link.

    No token is issued; the account can log in once the link is redeemed.

    Raises:
        400: Missing fields or password precondition failed
        409: Email already registered, or a confirmation is still pending
        502: Confirmation email could not be sent (the account is removed)
    """
    runtime = get_runtime()
    pending = await runtime.lifecycle.signup(
        name=body.name,
        email=body.email,
        password=body.password,
        password_confirm=body.password_confirm,
        role=body.role,
    )
    return Envelope(
        status="ok",
        data=PendingResponse(email=pending.email, expires_at=pending.expires_at),
    )


@router.patch("/confirmEmail/{token}", response_model=Envelope, tags=["auth"])
async def confirm_email(response: Response, token: str = Path(..., max_length=256)):
    runtime = get_runtime()
    grant = await runtime.lifecycle.confirm_email(token)
    return _grant_response(response, grant)


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Exchange email and password for an access token.

    Raises:
        400: Email or password missing
        401: Unknown email or wrong password (same message for both)
        403: Email address not confirmed yet
    """
    runtime = get_runtime()
    grant = await runtime.lifecycle.login(email=body.email, password=body.password)
    return _grant_response(response, grant)


@router.get("/logout", response_model=Envelope, tags=["auth"])
async def logout(response: Response):
    # Tokens are stateless; dropping the cookie is all there is to do
    _clear_token_cookie(response)
    return Envelope(status="ok", data=StatusResponse(status="logged_out"))


@router.post("/forgotPassword", response_model=Envelope, tags=["auth"])
async def forgot_password(body: ForgotPasswordRequest):
    runtime = get_runtime()
    await runtime.lifecycle.forgot_password(email=body.email)
    return Envelope(
        status="ok",
        data=StatusResponse(status="sent", message="reset link sent to your email"),
    )


@router.patch("/resetPassword/{token}", response_model=Envelope, tags=["auth"])
async def reset_password(
    body: ResetPasswordRequest,
    response: Response,
    token: str = Path(..., max_length=256),
):
    runtime = get_runtime()
    grant = await runtime.lifecycle.reset_password(
        token, password=body.password, password_confirm=body.password_confirm
    )
    return _grant_response(response, grant)


@router.post("/reActivateAccount", response_model=Envelope, tags=["auth"])
async def reactivate_account(body: ReactivateRequest, response: Response):
    runtime = get_runtime()
    grant = await runtime.lifecycle.reactivate(email=body.email, password=body.password)
    return _grant_response(response, grant)


@router.patch("/updatePassword", response_model=Envelope, tags=["auth"])
async def update_password(
    body: UpdatePasswordRequest,
    response: Response,
    identity: Identity = Depends(get_identity),
):
    """Change the password of the logged-in account.

    Every token issued before the change stops working; the response carries
    a fresh one.
    """
    runtime = get_runtime()
    grant = await runtime.lifecycle.update_password(
        identity.account,
        current_password=body.current_password,
        new_password=body.new_password,
        new_password_confirm=body.new_password_confirm,
    )
    return _grant_response(response, grant)


@router.patch("/updateProfileInfo", response_model=Envelope, tags=["users"])
async def update_profile(
    body: UpdateProfileRequest, identity: Identity = Depends(get_identity)
):
    runtime = get_runtime()
    account = await runtime.lifecycle.update_profile(
        identity.account, name=body.name, email=body.email
    )
    return Envelope(status="ok", data={"user": _user(account)})


@router.delete("/deleteAccount", status_code=204, tags=["users"])
async def delete_account(
    body: DeactivateRequest, identity: Identity = Depends(get_identity)
):
    runtime = get_runtime()
    await runtime.lifecycle.deactivate(identity.account, password=body.password)
    response = Response(status_code=204)
    _clear_token_cookie(response)
    return response


@router.get("/me", response_model=Envelope, tags=["users"])
async def get_me(identity: Identity = Depends(get_identity)):
    return Envelope(status="ok", data={"user": _user(identity.account)})


# admin
@router.get("/", response_model=Envelope, tags=["admin"])
async def list_users(
    role: Optional[Role] = Query(None),
    include_inactive: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    _: Identity = Depends(get_admin),
):
    runtime = get_runtime()
    accounts = runtime.store.list_accounts(
        role=role, include_inactive=include_inactive, limit=limit
    )
    return Envelope(
        status="ok", data=UserListResponse(items=[_user(a) for a in accounts])
    )


@router.get("/{account_id}", response_model=Envelope, tags=["admin"])
async def get_user(account_id: str, _: Identity = Depends(get_admin)):
    runtime = get_runtime()
    account = runtime.store.get_account(account_id, include_inactive=True)
    if account is None:
        raise NotFoundError("no user found with that id")
    return Envelope(status="ok", data={"user": _user(account)})


@router.patch("/{account_id}", response_model=Envelope, tags=["admin"])
async def update_user(
    account_id: str,
    body: AdminUpdateRequest,
    admin: Identity = Depends(get_admin),
):
    """Change another account's name, role or active flag.

    Passwords and email addresses are owned by the account holder and cannot
    be set here.
    """
    runtime = get_runtime()
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise BadRequestError("nothing to update", detail={"fields": ["name", "role", "active"]})
    account = runtime.store.update_account(account_id, **changes)
    if account is None:
        raise NotFoundError("no user found with that id")
    logger.info(
        "admin_user_updated",
        admin_id=admin.account_id,
        account_id=account_id,
        fields=sorted(changes),
    )
    return Envelope(status="ok", data={"user": _user(account)})


@router.delete("/{account_id}", status_code=204, tags=["admin"])
async def delete_user(account_id: str, admin: Identity = Depends(get_admin)):
    if account_id == admin.account_id:
        raise BadRequestError("use /deleteAccount to remove your own account")
    runtime = get_runtime()
    if not runtime.store.delete_account(account_id):
        raise NotFoundError("no user found with that id")
    logger.info("admin_user_deleted", admin_id=admin.account_id, account_id=account_id)
    return Response(status_code=204)
