import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.engine import get_db, get_session_factory
from app.core.database.models import Base
from app.core.events import EventBus, get_event_bus
from app.core.limiter import limiter
from app.features.map.cache import MapCache, RequestCoalescer
from app.features.map.map_store import MapStore
from app.features.stores import get_map_cache, get_request_coalescer


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database so concurrent sessions each get their own connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def create(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(engine, create):
    return async_sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def statements(engine):
    """SQL statements sent to the database from now on."""
    executed: list[str] = []

    def before_cursor_execute(_conn, _cursor, statement, _parameters, _context, _executemany):
        if not statement.lstrip().upper().startswith("PRAGMA"):
            executed.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", before_cursor_execute)
    yield executed
    event.remove(engine.sync_engine, "before_cursor_execute", before_cursor_execute)


@pytest.fixture
def map_cache():
    return MapCache(ttl=300)


@pytest.fixture
def request_coalescer():
    return RequestCoalescer()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def map_store(session_factory, map_cache, request_coalescer):
    return MapStore(session_factory=session_factory, cache=map_cache, coalescer=request_coalescer)


@pytest.fixture(scope="session")
def app():
    from app.main import app as main_app

    return main_app


@pytest.fixture
def test_app(app, session_factory, map_cache, request_coalescer, event_bus):
    """The app wired to the test database, cache and event bus, with rate limiting off."""

    async def get_test_db():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_map_cache] = lambda: map_cache
    app.dependency_overrides[get_request_coalescer] = lambda: request_coalescer
    app.dependency_overrides[get_event_bus] = lambda: event_bus
    limiter.enabled = False
    yield app
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(test_app):
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client
