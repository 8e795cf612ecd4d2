"""
Notesfy Backend — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the whole suite.
How:   Environment variables are set before any notesfy import so the
       settings singleton picks up test values (SQLite, fake gateway keys,
       temporary storage, cheap bcrypt).

Fixture Hierarchy:
    Function-scoped (fresh for each test):
    ├── db_engine:        async SQLite engine on a temporary file, schema created
    ├── session_factory:  async_sessionmaker bound to db_engine
    ├── fake_gateway:     in-memory PaymentGateway recording every call
    ├── make_user / make_post: factories that commit their rows
    ├── temp_storage:     temporary directory for FileService tests
    ├── sample_pdf_bytes / sample_image_bytes
    └── test_client:      httpx AsyncClient over ASGITransport, with the DB
                          dependency and the gateway swapped for the fakes

SQLite and concurrency:
    Each transaction starts with BEGIN IMMEDIATE, so concurrent sessions
    are serialized by SQLite's write lock (the busy timeout makes the
    others wait). Tests must not keep a session open while a service runs
    on another session.
"""

import os
import tempfile

# Set BEFORE any notesfy import: settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="notesfy_health_"), "health.db"
)
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_PAYOUT_ACCOUNT"] = "2323230000000000"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="notesfy_test_")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["BCRYPT_ROUNDS"] = "4"
# The app (and its rate limiter) is shared by every API test
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["RATE_LIMIT_PAYMENT_REQUESTS"] = "10000"

import itertools
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from notesfy.config import settings
from notesfy.database import Base
from notesfy.models import Post, User
from notesfy.services.account_service import hash_password
from notesfy.services.file_service import PDF, file_service
from notesfy.services.gateway_base import PaymentGateway
from notesfy.services.signature import compute_signature


# ══════════════════════════════════════════════════════════════════════════
# Sample Content
# ══════════════════════════════════════════════════════════════════════════

SAMPLE_PDF = (
    b"%PDF-1.4\n"
    b"1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n"
    b"2 0 obj << /Type /Pages /Kids [] /Count 0 >> endobj\n"
    b"trailer << /Root 1 0 R >>\n"
    b"%%EOF\n"
)

SAMPLE_JPEG = (
    b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    b"\xff\xd9"
)


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    return SAMPLE_PDF


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Smallest JPEG that libmagic recognizes: SOI + JFIF header + EOI."""
    return SAMPLE_JPEG


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """
    Async engine on a fresh SQLite file with every table created.

    NullPool gives each session its own connection, which is what the
    concurrency tests need.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'notesfy_test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself (see _on_begin)
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# ══════════════════════════════════════════════════════════════════════════
# Factories
# ══════════════════════════════════════════════════════════════════════════

_counter = itertools.count(1)


@pytest.fixture
def make_user(session_factory):
    """Creates and commits a user; returns it detached."""

    async def _make_user(
        username: Optional[str] = None,
        password: str = "secret123",
        amount: Decimal = Decimal("0.00"),
        downloads: int = 0,
    ) -> User:
        n = next(_counter)
        username = username or f"user{n}"
        async with session_factory() as session:
            user = User(
                username=username,
                email=f"{username}@example.com",
                password_hash=hash_password(password),
                profile_image=settings.default_profile_image,
                amount=amount,
                downloads=downloads,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def make_post(session_factory):
    """Stores a PDF through the shared FileService and commits a post for it."""

    async def _make_post(
        author: User,
        chapter: str = "Thermodynamics",
        subject: str = "Physics",
        content: bytes = SAMPLE_PDF,
    ) -> Post:
        _, relative_path = await file_service.store_file(content, ".pdf", PDF)
        async with session_factory() as session:
            post = Post(
                chapter=chapter,
                subject=subject,
                topics="laws, entropy",
                qualification="B.Sc",
                filename=relative_path,
                author_id=author.id,
                author=author.username,
            )
            session.add(post)
            await session.commit()
            return post

    return _make_post


def payment_proof(order_id: str = "order_test_1", payment_id: str = "pay_test_1") -> Dict[str, str]:
    """A correctly signed checkout result for the test secret."""
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": compute_signature(order_id, payment_id, settings.signature_secret),
    }


# ══════════════════════════════════════════════════════════════════════════
# Fake Gateway
# ══════════════════════════════════════════════════════════════════════════

class FakeGateway(PaymentGateway):
    """
    In-memory PaymentGateway.

    `calls` records (method, kwargs) in order. Put an exception in
    `failures[method]` to make that method raise it.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, kwargs))
        if method in self.failures:
            raise self.failures[method]

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> Dict[str, Any]:
        self._record("create_order", amount_minor=amount_minor, currency=currency, receipt=receipt)
        return {
            "id": f"order_{next(self._ids)}",
            "entity": "order",
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
        }

    async def create_contact(self, name: str, email: str, reference_id: str) -> Dict[str, Any]:
        self._record("create_contact", name=name, email=email, reference_id=reference_id)
        return {"id": f"cont_{next(self._ids)}", "entity": "contact", "name": name}

    async def create_fund_account(
        self, contact_id: str, name: str, ifsc: str, account_number: str
    ) -> Dict[str, Any]:
        self._record(
            "create_fund_account",
            contact_id=contact_id, name=name, ifsc=ifsc, account_number=account_number,
        )
        return {"id": f"fa_{next(self._ids)}", "entity": "fund_account", "contact_id": contact_id}

    async def create_payout(
        self,
        fund_account_id: str,
        amount_minor: int,
        currency: str,
        mode: str,
        idempotency_key: str,
        reference_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._record(
            "create_payout",
            fund_account_id=fund_account_id,
            amount_minor=amount_minor,
            currency=currency,
            mode=mode,
            idempotency_key=idempotency_key,
            reference_id=reference_id,
        )
        return {
            "id": f"pout_{next(self._ids)}",
            "entity": "payout",
            "fund_account_id": fund_account_id,
            "amount": amount_minor,
            "currency": currency,
            "mode": mode,
            "status": "processing",
        }

    def status(self) -> str:
        return "available"


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, fake_gateway, monkeypatch):
    """
    httpx AsyncClient talking to the app in-process.

    The request session comes from the test database and the download and
    payout services talk to `fake_gateway`.
    """
    from notesfy.database import get_db_session
    from notesfy.main import app
    from notesfy.services.download_service import download_service
    from notesfy.services.payout_service import payout_service

    async def _override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    monkeypatch.setattr(download_service, "gateway", fake_gateway)
    monkeypatch.setattr(payout_service, "gateway", fake_gateway)
    app.dependency_overrides[get_db_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
