import os

os.environ.setdefault("TVTRACKER_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TVTRACKER_SESSION_SECRET", "test-secret")

from datetime import timedelta
from typing import Callable, Optional

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import tvtracker.models  # noqa: F401
from tvtracker.database import Base, get_session
from tvtracker.main import app
from tvtracker.models import Episode, Show, ShowOnUser
from tvtracker.services.catalog import TVMazeClient, get_catalog_client
from tvtracker.services.users import create_user
from tvtracker.utils import utcnow

PASSWORD = "correct horse battery"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


class CatalogStub:
    """Answers catalog requests from a path -> (status, json) table."""

    def __init__(self):
        self.responses: dict[str, tuple[int, object]] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get(request.url.path, (404, {"message": "not found"}))
        return httpx.Response(status, json=body)

    def client(self) -> TVMazeClient:
        return TVMazeClient(base_url="https://catalog.test", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def catalog():
    return CatalogStub()


@pytest.fixture
async def client(session_factory, catalog):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_catalog_client] = catalog.client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def user(session):
    return await create_user(session, "viewer@example.com", PASSWORD)


@pytest.fixture
async def logged_in(client, user):
    response = await client.post("/login", data={"email": user.email, "password": PASSWORD})
    assert response.status_code == 303
    return client


@pytest.fixture
def make_show(session) -> Callable:
    """Create a show with episodes given as (season, number, days since airing, runtime)."""
    counter = {"value": 0}

    async def factory(
        name: str = "Severance",
        episodes: tuple = ((1, 1, 30, 55), (1, 2, 20, 50), (1, 3, -5, 45)),
        user_id: Optional[str] = None,
        archived: bool = False
    ) -> Show:
        counter["value"] += 1
        show = Show(maze_id=str(1000 + counter["value"]), name=name, summary="")
        session.add(show)
        await session.flush()

        for index, (season, number, days_ago, runtime) in enumerate(episodes):
            session.add(Episode(
                maze_id=f"{show.maze_id}-{index}",
                show_id=show.id,
                name=f"Episode {number}",
                season=season,
                number=number,
                air_date=utcnow() - timedelta(days=days_ago) if days_ago is not None else None,
                runtime=runtime
            ))

        if user_id:
            session.add(ShowOnUser(show_id=show.id, user_id=user_id, archived=archived))

        await session.commit()
        return show

    return factory


@pytest.fixture
def episodes_of(session) -> Callable:
    async def load(show: Show) -> list[Episode]:
        result = await session.execute(
            select(Episode).where(Episode.show_id == show.id).order_by(Episode.season, Episode.number)
        )
        return list(result.scalars().all())

    return load
