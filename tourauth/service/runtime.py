from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import urlparse, urlunparse

from tourauth.config import get_settings, reset_settings_cache
from tourauth.logging import get_logger
from tourauth.service.access import AccessGuard
from tourauth.service.email import EmailService
from tourauth.service.lifecycle import AccountLifecycle
from tourauth.service.notifications import NotificationDispatcher
from tourauth.service.passwords import PasswordHasher
from tourauth.service.secure_tokens import SecureTokenGenerator
from tourauth.service.tokens import TokenCodec
from tourauth.storage.memory import MemoryStore
from tourauth.storage.models import utcnow
from tourauth.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        if parsed.username:
            netloc = f"{parsed.username}:***@{netloc}"
        else:
            netloc = f":***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow):
        self.settings = get_settings()
        self.clock = clock
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.hasher = PasswordHasher(
            time_cost=self.settings.password_hash_time_cost,
            memory_cost_kib=self.settings.password_hash_memory_cost_kib,
        )
        self.codec = TokenCodec(
            self.settings.jwt_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
            ttl=timedelta(days=self.settings.jwt_expires_in_days),
            clock=clock,
        )
        self.secure_tokens = SecureTokenGenerator(
            ttl=timedelta(minutes=self.settings.account_token_ttl_minutes),
            clock=clock,
        )
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            dev_mode=self.settings.email_dev_mode,
        )
        self.notifier = NotificationDispatcher(
            self.email,
            base_url=self.settings.app_base_url,
            token_ttl_minutes=self.settings.account_token_ttl_minutes,
            brand=self.settings.email_from_name,
        )
        self.lifecycle = AccountLifecycle(
            self.store,
            self.hasher,
            self.codec,
            self.secure_tokens,
            self.notifier,
            clock=clock,
        )
        self.guard = AccessGuard(self.store, self.codec)

        logger.info(
            "runtime_init_completed",
            store_type=store_type,
            email_configured=self.email.is_configured,
            environment=self.settings.environment,
        )

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(*, clock: Callable[[], datetime] = utcnow) -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None:
            runtime.close()
        runtime = Runtime(clock=clock)
        return runtime
