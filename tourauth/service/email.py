from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from tourauth.logging import get_logger, redact_email

logger = get_logger(__name__)


class EmailService:
    """SMTP transport for transactional email.

    Supports:
    - SMTP with STARTTLS or implicit SSL
    - Logging instead of sending when SMTP is not configured (dev mode)
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Natours",
        dev_mode: bool = True,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.dev_mode = dev_mode

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def _build_message(
        self, to_email: str, subject: str, html_body: str, text_body: Optional[str]
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def _open(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
            try:
                server.starttls(context=context)
            except OSError:
                server.close()
                raise
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=30
            )
        return server

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send an email via SMTP.

        Returns True if sent successfully, False otherwise. Never raises for
        delivery problems; callers decide how to compensate.
        """
        recipient = redact_email(to_email)
        if not self.is_configured:
            if not self.dev_mode:
                logger.error("email_not_configured", to=recipient, subject=subject)
                return False
            logger.info(
                "email_dev_mode",
                to=recipient,
                subject=subject,
                body_preview=(text_body or html_body)[:200],
            )
            return True

        msg = self._build_message(to_email, subject, html_body, text_body)
        try:
            with self._open() as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            # Relay credentials are wrong; retrying will not help
            logger.error(
                "email_auth_failed",
                to=recipient,
                host=self.smtp_host,
                smtp_code=exc.smtp_code,
            )
            return False
        except OSError as exc:
            # SMTPException, SSLError, refused connections and timeouts
            logger.error(
                "email_delivery_failed",
                to=recipient,
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

        logger.info("email_sent", to=recipient, subject=subject)
        return True
