import os
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from auth.application.services import create_token
from main import app
from notes.domain.entities import Note
from notes.infrastructure.note_repository import DbNoteRepository
from shared.dependencies import get_db
from shared.infrastructure.database import Base

import notes.infrastructure.models  # noqa: F401


@pytest.fixture
async def test_engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = create_async_engine(url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def note_repo(db):
    return DbNoteRepository(db)


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_token(user_id)}"}


async def make_note(
    repo: DbNoteRepository,
    owner: str = "alice",
    title: str = "Test Note",
    content: str | None = None,
    ydoc: bytes | None = None,
    workspace_id: UUID | None = None,
) -> Note:
    return await repo.create_note(
        Note(
            title=title,
            content=content,
            ydoc=ydoc,
            workspace_id=workspace_id,
            created_by_id=owner,
        )
    )


@pytest.fixture
async def client(session_factory):
    async def _override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
