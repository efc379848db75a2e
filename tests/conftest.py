import pytest
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Tuple
from httpx import AsyncClient, ASGITransport

from shortener.config import Settings
from shortener.main import create_app
from shortener.services.log_sink import LogSink
from shortener.services.shortening import ShorteningService
from shortener.storage.memory import MemoryStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingSink(LogSink):
    """Keeps every record in memory instead of sending it anywhere."""

    def __init__(self):
        super().__init__()
        self.records: List[Tuple[str, str, str]] = []

    def log(self, level: str, package: str, message: str) -> None:
        self.records.append((level, package, message))

    def levels(self) -> List[str]:
        return [level for level, _, _ in self.records]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
async def memory_store() -> AsyncGenerator[MemoryStore, None]:
    async with MemoryStore() as store:
        yield store


@pytest.fixture
def service(memory_store, clock, sink) -> ShorteningService:
    return ShorteningService(memory_store, "http://sho.rt", sink=sink, clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        STORAGE_BACKEND="memory",
        BASE_URL="http://test",
        REDIS_URL=None,
        LOG_SINK_URL=None,
    )


@pytest.fixture
def app(test_settings):
    return create_app(test_settings)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run lifespan events, so enter it by hand
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c
