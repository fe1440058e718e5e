import asyncio
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from storefront.core import metrics
from storefront.core.dependencies import get_postal_resolver
from storefront.db.base import Base
from storefront.db.session import get_session
from storefront.main import app
from storefront.services import postal


@pytest.fixture(autouse=True)
def _reset_process_state() -> Generator[None, None, None]:
    metrics.reset()
    postal._reset_cache_for_tests()
    yield
    metrics.reset()
    postal._reset_cache_for_tests()


@pytest.fixture
def session_factory() -> Generator[async_sessionmaker, None, None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield SessionLocal
    asyncio.run(engine.dispose())


@pytest.fixture
def client(session_factory: async_sessionmaker) -> Generator[TestClient, None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_postal_resolver] = lambda: postal.TableResolver()
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()
