"""
Centralized Test Configuration.
"""

import json
import random
from dataclasses import dataclass
from decimal import Decimal

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from tenapay.app.main import app
from tenapay.app.db.session import get_db, get_session_factory, Base
from tenapay.app.core.dependencies import get_gateway_client, get_mailer, get_payout_initiator
from tenapay.app.core.exceptions import ExternalServiceError
from tenapay.app.core.jwt import create_access_token
from tenapay.app.core.reliability import RetryPolicy
from tenapay.app.core.security import get_password_hash
from tenapay.app.models.enums import UserRole
from tenapay.app.models.user import User
from tenapay.app.services.connections import ConnectionDirectory
from tenapay.app.services.gateway import GatewayClient
from tenapay.app.services.ledger import LedgerService
from tenapay.app.services.notification_service import NotificationDispatcher
from tenapay.app.services.payouts import PayoutInitiator

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "secret123"
_PASSWORD_HASH = None


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def password_hash() -> str:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = get_password_hash(TEST_PASSWORD)
    return _PASSWORD_HASH


def random_phone() -> str:
    return "2519" + "".join(random.choice("0123456789") for _ in range(8))


# --- Database ---

@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    File-backed SQLite with a real connection pool, so concurrent sessions
    get their own connections and contend on database locks.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tenapay_concurrency.db'}",
        connect_args={"timeout": 30},
        pool_size=20,
        max_overflow=10,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


# --- Accounts ---

@dataclass
class Account:
    id: str
    email: str
    phone: str
    role: UserRole

    @property
    def token(self) -> str:
        return create_access_token({"sub": self.id, "user_id": self.id, "role": self.role.value})

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


async def create_account(
    session_factory,
    balance: Decimal = Decimal("0"),
    role: UserRole = UserRole.USER,
    phone: str = None
) -> Account:
    """Insert an account and fund it through the ledger so balance == sum of transactions."""
    async with session_factory() as session:
        phone = phone or random_phone()
        user = User(
            email=f"{phone}@example.com",
            phone=phone,
            hashed_password=password_hash(),
            role=role,
            balance=0,
        )
        session.add(user)
        await session.commit()
        account = Account(id=user.id, email=user.email, phone=user.phone, role=role)

        if Decimal(balance) > 0:
            await LedgerService.credit(
                session, account.id, balance, "Opening balance", reference=f"seed:{account.id}"
            )
    return account


@pytest.fixture
def make_account(session_factory):
    async def _make(balance=Decimal("0"), role=UserRole.USER, phone=None) -> Account:
        return await create_account(session_factory, balance=balance, role=role, phone=phone)
    return _make


@pytest.fixture
async def admin(make_account):
    return await make_account(role=UserRole.ADMIN)


# --- Side-effect fakes ---

class FakeMailer:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.enabled = True

    async def send(self, to, subject, html):
        if self.fail:
            raise ConnectionRefusedError("SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail
        self.accepted = False

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(json.loads(text))


class FakeArifpay:
    """
    httpx MockTransport handler for the gateway.

    'fail_times' transfers fail with 'fail_status' before one succeeds;
    fail_times=-1 fails every transfer.
    """

    def __init__(self):
        self.requests = []
        self.fail_times = 0
        self.fail_status = 503

    @property
    def transfer_requests(self):
        return [r for r in self.requests if r["path"].endswith("/Telebirr/b2c/transfer")]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append({"path": request.url.path, "headers": dict(request.headers), "json": body})

        if request.url.path.endswith("/checkout/session"):
            return httpx.Response(200, json={
                "error": False,
                "data": {"sessionId": "CHK-123", "paymentUrl": "https://checkout.test/pay/CHK-123"}
            })

        if self.fail_times != 0:
            if self.fail_times > 0:
                self.fail_times -= 1
            return httpx.Response(self.fail_status, json={"error": True, "msg": "Service unavailable"})

        return httpx.Response(200, json={
            "error": False,
            "msg": "Transfer queued",
            "data": {"sessionId": body.get("Sessionid"), "status": "PENDING"}
        })


@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def directory():
    return ConnectionDirectory()


@pytest.fixture
def arifpay():
    return FakeArifpay()


@pytest.fixture
def gateway_client(arifpay):
    return GatewayClient(
        base_url="https://gateway.test/api",
        api_key="test-key",
        timeout=5.0,
        transport=httpx.MockTransport(arifpay),
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_policy(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return RetryPolicy(max_attempts=2, backoff_delay=0.7, retry_on=(ExternalServiceError,), sleep=fake_sleep)


@pytest.fixture
def dispatcher(session_factory, directory, fake_mailer):
    return NotificationDispatcher(session_factory, directory, fake_mailer)


@pytest.fixture
def initiator(gateway_client, dispatcher, retry_policy):
    return PayoutInitiator(gateway_client, dispatcher, retry_policy)


# --- HTTP client ---

@pytest.fixture
async def client(session_factory, gateway_client, fake_mailer, initiator):
    """Async client against the app, wired to the per-test database and fakes."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_mailer] = lambda: fake_mailer
    app.dependency_overrides[get_payout_initiator] = lambda: initiator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
