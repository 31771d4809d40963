import httpx
import pytest
from asgi_lifespan import LifespanManager
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.main import app
from app.auth import deps as auth_deps
from app.core.config import Settings, settings
from app.core.db import Base, get_session
from app.core.deps import build_services
from app.models.models import ClothingItem, WashPreference
from app.services.freshness import init_item
from tests.fixtures import FakeLLMProvider, FakeWeatherProvider

TEST_USER = "test-user"
API_BASE = "http://test/v1"


@pytest.fixture(autouse=True)
def override_auth():
    app.dependency_overrides[auth_deps.get_current_user_id] = lambda: TEST_USER
    yield
    app.dependency_overrides.pop(auth_deps.get_current_user_id, None)


@pytest.fixture(autouse=True)
def small_embeddings(monkeypatch):
    # test vectors are three wide
    monkeypatch.setattr(settings, "EMBEDDING_DIM", 3)


@pytest.fixture
def test_settings():
    return Settings(NARRATIVE_CACHE_ENABLED=False, WEATHER_CACHE_SWEEP_INTERVAL_S=0, LLM_ENABLED=False, EMBEDDING_DIM=3)


@pytest.fixture
async def engine(tmp_path):
    # one file-backed sqlite db per test; every session sees the same data
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wardrobe.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def weather_provider():
    return FakeWeatherProvider()


@pytest.fixture
def llm_provider():
    return FakeLLMProvider()


@pytest.fixture
def services(test_settings, weather_provider, llm_provider):
    return build_services(test_settings, weather_provider=weather_provider, llm_provider=llm_provider)


@pytest.fixture
def make_item(session_factory):
    async def _make(
        category: str = "top",
        *,
        wash_preference: str = WashPreference.AFTER_FEW_WEARS,
        embedding=None,
        details=None,
        name=None,
        user_id: str = TEST_USER,
        **fields,
    ):
        item = ClothingItem(
            user_id=user_id,
            name=name or f"{category} item",
            category=category,
            details=details or {},
            embedding=embedding,
            wash_preference=wash_preference,
            is_archived=False,
        )
        init_item(item)
        for k, v in fields.items():
            setattr(item, k, v)
        async with session_factory() as s:
            s.add(item)
            await s.commit()
        return item.id

    return _make


@pytest.fixture
async def client(session_factory, services):
    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.state.services = services
    async with LifespanManager(app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=API_BASE) as ac:
            yield ac
    app.state.services = None
    app.dependency_overrides.pop(get_session, None)
