from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol

from tourauth.logging import get_logger, redact_email
from tourauth.service.errors import EmailDeliveryFailedError
from tourauth.storage.models import Account

logger = get_logger(__name__)

Rollback = Callable[[], object]


class Mailer(Protocol):
    def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool: ...


_LAYOUT = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
        .button {{ display: inline-block; background: #55c57a; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: 600; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #5b6470; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{heading}</h1>
        <p>Hi {name},</p>
        <p>{intro}</p>
        <p style="margin: 30px 0;">
            <a href="{url}" class="button">{action}</a>
        </p>
        <p>This link will expire in {ttl_minutes} minutes.</p>
        <p>{outro}</p>
        <div class="footer">
            <p>{brand}</p>
            <p>If the button doesn't work, copy and paste this URL: {url}</p>
        </div>
    </div>
</body>
</html>
"""

_TEXT = """{heading}

Hi {name},

{intro}

{url}

This link will expire in {ttl_minutes} minutes.

{outro}

---
{brand}
"""


class NotificationDispatcher:
    """Renders lifecycle emails and compensates when delivery fails."""

    def __init__(
        self,
        mailer: Mailer,
        *,
        base_url: str,
        token_ttl_minutes: int = 10,
        brand: str = "Natours",
    ) -> None:
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")
        self.token_ttl_minutes = token_ttl_minutes
        self.brand = brand

    def confirmation_url(self, token: str) -> str:
        return f"{self.base_url}/api/v1/users/confirmEmail/{token}"

    def reset_url(self, token: str) -> str:
        return f"{self.base_url}/api/v1/users/resetPassword/{token}"

    def _render(self, account: Account, **parts: str) -> tuple[str, str]:
        values = dict(
            parts,
            name=account.name.split(" ")[0] if account.name else "there",
            ttl_minutes=self.token_ttl_minutes,
            brand=self.brand,
        )
        return _LAYOUT.format(**values), _TEXT.format(**values)

    async def send_confirmation(
        self, account: Account, token: str, *, rollback: Optional[Rollback] = None
    ) -> None:
        html_body, text_body = self._render(
            account,
            heading="Confirm your email",
            intro="Welcome aboard! Please confirm your email address to activate your account:",
            url=self.confirmation_url(token),
            action="Confirm Email",
            outro="If you didn't create an account, you can safely ignore this email.",
        )
        await self._dispatch(
            account,
            subject=f"Confirm your {self.brand} email (valid for {self.token_ttl_minutes} min)",
            html_body=html_body,
            text_body=text_body,
            kind="confirmation",
            rollback=rollback,
        )

    async def send_password_reset(
        self, account: Account, token: str, *, rollback: Optional[Rollback] = None
    ) -> None:
        html_body, text_body = self._render(
            account,
            heading="Reset your password",
            intro="We received a request to reset your password. Click the button below to choose a new one:",
            url=self.reset_url(token),
            action="Reset Password",
            outro="If you didn't request this, you can safely ignore this email.",
        )
        await self._dispatch(
            account,
            subject=f"Your password reset token (valid for {self.token_ttl_minutes} min)",
            html_body=html_body,
            text_body=text_body,
            kind="password_reset",
            rollback=rollback,
        )

    async def _dispatch(
        self,
        account: Account,
        *,
        subject: str,
        html_body: str,
        text_body: str,
        kind: str,
        rollback: Optional[Rollback],
    ) -> None:
        error: Optional[str] = None
        try:
            sent = await asyncio.to_thread(
                self.mailer.send_email, account.email, subject, html_body, text_body
            )
        except Exception as exc:
            sent = False
            error = str(exc)
        if sent:
            logger.info("notification_sent", kind=kind, account_id=account.id)
            return

        logger.error(
            "notification_failed",
            kind=kind,
            account_id=account.id,
            to=redact_email(account.email),
            error=error,
        )
        if rollback is not None:
            try:
                await asyncio.to_thread(rollback)
            except Exception as exc:
                # Delivery failure is what the caller reports
                logger.error(
                    "notification_rollback_failed",
                    kind=kind,
                    account_id=account.id,
                    error=str(exc),
                )
        raise EmailDeliveryFailedError()
