import os

# Settings are read at import time; point them at throwaway values first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

import uuid
from datetime import datetime
from typing import Any, Dict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from notification_dispatch.models.notification import Base, Notification, NotificationStatus
from notification_dispatch.providers.email import ProviderResult

NOW = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_notification(session_factory):
    """Insert a notification row directly, bypassing the ledger."""
    async def _make(**overrides) -> Notification:
        values: Dict[str, Any] = {
            "tenant_id": "tenant-a",
            "idempotency_key": str(uuid.uuid4()),
            "request_hash": "0" * 64,
            "event_type": "otp",
            "priority": "P1",
            "template_id": "tpl-otp",
            "to_email": "user@example.com",
            "variables": {"code": "123456"},
            "status": NotificationStatus.ACCEPTED.value,
            "attempts": 0,
            "created_at": NOW,
            "updated_at": NOW,
        }
        values.update(overrides)
        notification = Notification(**values)
        async with session_factory() as session:
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
        return notification
    return _make


@pytest.fixture
def fetch_notification(session_factory):
    async def _fetch(notification_id) -> Notification:
        async with session_factory() as session:
            return await session.get(Notification, notification_id)
    return _fetch


class FakeEmailProvider:
    name = "fake"

    def __init__(self):
        self.calls = []
        self.error = None

    async def send_template_email(self, to_email, template_id, variables):
        self.calls.append({"to_email": to_email, "template_id": template_id, "variables": variables})
        if self.error is not None:
            raise self.error
        return ProviderResult(provider=self.name, provider_message_id=f"msg-{len(self.calls)}")

    async def close(self):
        return None


@pytest.fixture
def provider():
    return FakeEmailProvider()


@pytest.fixture
async def client(session_factory):
    from notification_dispatch.main import app
    from notification_dispatch.database import get_db
    from notification_dispatch.dependencies.auth import get_current_user
    from notification_dispatch.routers.notifications import submit_rate_limiter

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[submit_rate_limiter] = lambda: None
    app.dependency_overrides[get_current_user] = lambda: {"user_id": "tester", "role": "Admin"}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def unauthenticated_client(session_factory):
    from notification_dispatch.main import app
    from notification_dispatch.database import get_db
    from notification_dispatch.routers.notifications import submit_rate_limiter

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[submit_rate_limiter] = lambda: None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
