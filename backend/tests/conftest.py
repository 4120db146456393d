from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

from clubchat.domain.chat.directory import InMemoryDirectory
from clubchat.domain.chat.inbox import InMemoryInboxIndex
from clubchat.domain.chat.models import Identity, Role
from clubchat.domain.chat.service import ChatService, set_service
from clubchat.domain.chat.store import InMemoryConversationStore
from clubchat.infra import postgres
from clubchat.main import app
from clubchat.settings import settings


class ManualClock:
    """Deterministic clock the tests can move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


USERS = [
    Identity(id="m1", display_name="Mia Member", role=Role.MEMBER),
    Identity(id="m2", display_name="Max Member", role=Role.MEMBER),
    Identity(id="s1", display_name="Sam Staff", role=Role.STAFF),
    Identity(id="s2", display_name="Sue Staff", role=Role.STAFF),
    Identity(id="a1", display_name="Ada Admin", role=Role.ADMIN),
]


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    from clubchat.infra.redis import redis_client, set_redis_client

    client = FakeRedis(decode_responses=True)
    original = redis_client.swap(client)
    try:
        yield client
    finally:
        set_redis_client(original)
        await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
    async def _noop():
        return None

    monkeypatch.setattr(postgres, "init_pool", _noop)
    monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
    """API tests authenticate with X-User-Id, which is only accepted in dev mode."""
    original_env = settings.environment
    original_backend = settings.chat_backend
    original_live = settings.chat_live_backend
    settings.environment = "dev"
    settings.chat_backend = "memory"
    settings.chat_live_backend = "memory"
    try:
        yield
    finally:
        settings.environment = original_env
        settings.chat_backend = original_backend
        settings.chat_live_backend = original_live


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def directory():
    return InMemoryDirectory(USERS)


@pytest.fixture
def service(clock, directory):
    chat = ChatService(
        store=InMemoryConversationStore(clock=clock),
        inbox=InMemoryInboxIndex(),
        directory=directory,
        clock=clock,
        timeout_seconds=1.0,
    )
    set_service(chat)
    try:
        yield chat
    finally:
        set_service(None)


@pytest_asyncio.fixture
async def api_client(service):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
