import asyncio
import inspect
import os
import re
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Configure the environment before any import that might initialize settings
_test_tmp_dir = tempfile.mkdtemp(prefix="tourauth_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("EMAIL_DEV_MODE", "true")
# Cheap Argon2 parameters keep the suite fast
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST_KIB", "64")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from tourauth.service.access import AccessGuard  # noqa: E402
from tourauth.service.lifecycle import AccountLifecycle  # noqa: E402
from tourauth.service.notifications import NotificationDispatcher  # noqa: E402
from tourauth.service.passwords import PasswordHasher  # noqa: E402
from tourauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from tourauth.service.secure_tokens import SecureTokenGenerator  # noqa: E402
from tourauth.service.tokens import TokenCodec  # noqa: E402
from tourauth.storage.memory import MemoryStore  # noqa: E402
from tourauth.storage.models import Role  # noqa: E402

TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"
PASSWORD = "pass1234!"

_CONFIRM_LINK = re.compile(r"/confirmEmail/([0-9a-f]{64})")
_RESET_LINK = re.compile(r"/resetPassword/([0-9a-f]{64})")


class FakeClock:
    """Controllable UTC clock injected wherever ``utcnow`` would be used."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingMailer:
    """Mail transport double that keeps every message it was asked to send."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.error: Exception | None = None

    def send_email(self, to_email, subject, html_body, text_body=None):
        if self.error is not None:
            raise self.error
        if self.fail:
            return False
        self.sent.append(
            {"to": to_email, "subject": subject, "html": html_body, "text": text_body}
        )
        return True

    def _last_match(self, pattern):
        for message in reversed(self.sent):
            found = pattern.search(message["html"])
            if found:
                return found.group(1)
        raise AssertionError("no matching email was sent")

    def last_confirmation_token(self) -> str:
        return self._last_match(_CONFIRM_LINK)

    def last_reset_token(self) -> str:
        return self._last_match(_RESET_LINK)


@pytest.fixture(autouse=True)
def reset_runtime_state(tmp_path, monkeypatch):
    # Fresh state directory per test so memory snapshots never leak across tests
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path / "shared"))
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path), persist=False)


@pytest.fixture
def hasher():
    return PasswordHasher(time_cost=1, memory_cost_kib=64)


@pytest.fixture
def codec(clock):
    return TokenCodec(
        TEST_SECRET,
        issuer="tourauth",
        audience="tourauth-clients",
        ttl=timedelta(days=90),
        clock=clock,
    )


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def notifier(mailer):
    return NotificationDispatcher(mailer, base_url="http://testserver", token_ttl_minutes=10)


@pytest.fixture
def lifecycle(store, hasher, codec, clock, notifier):
    return AccountLifecycle(
        store,
        hasher,
        codec,
        SecureTokenGenerator(ttl=timedelta(minutes=10), clock=clock),
        notifier,
        clock=clock,
    )


@pytest.fixture
def guard(store, codec):
    return AccessGuard(store, codec)


@pytest.fixture
def make_account(store, hasher):
    """Create a confirmed, active account directly in the store."""

    def _make(email="alice@example.com", password=PASSWORD, role=Role.USER, **changes):
        account = store.create_account(
            name="Alice Walker",
            email=email,
            password_hash=hasher.hash(password),
            role=role,
            email_confirmed=True,
        )
        if changes:
            account = store.update_account(account.id, **changes)
        return account

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
