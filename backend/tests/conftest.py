"""Shared test fixtures for the GDD manager backend and sync client."""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gdd_manager.api.dependencies import create_access_token, get_db
from gdd_manager.db.models import Base
from gdd_manager.main import app
from gdd_manager.models.project import Project, Section
from gdd_manager.sync.local_store import LocalStorage, LocalStore


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Monkey-patch JSONB columns to render as JSON for SQLite tests.
from sqlalchemy.dialects.postgresql import JSONB as _JSONB  # noqa: E402


def _register_jsonb_for_sqlite():
    """Register a compilation rule so JSONB compiles to JSON on SQLite."""
    from sqlalchemy.ext.compiler import compiles

    @compiles(_JSONB, "sqlite")
    def _compile_jsonb_sqlite(element, compiler, **kw):
        return "JSON"


_register_jsonb_for_sqlite()


# ---------------------------------------------------------------------------
# Remote store database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine so every session sees the same database."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}", echo=False)
    event.listen(eng.sync_engine, "connect", _set_sqlite_pragma)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP app
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def asgi_transport(session_factory) -> httpx.ASGITransport:
    """ASGI transport for the app with ``get_db`` bound to the test database."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    yield httpx.ASGITransport(app=app)
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def app_client(asgi_transport) -> httpx.AsyncClient:
    async with httpx.AsyncClient(transport=asgi_transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def user_id() -> str:
    return "user-1"


@pytest.fixture
def token(user_id) -> str:
    return create_access_token(user_id)


@pytest.fixture
def auth_headers(token) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Local store
# ---------------------------------------------------------------------------

@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "local" / "gdd.json")


@pytest.fixture
def store(storage) -> LocalStore:
    return LocalStore(storage)


def make_project(
    project_id: str = "p-1",
    title: str = "Space Game",
    updated_at: str = "2026-01-01T12:00:00.000Z",
    sections: list[Section] | None = None,
) -> Project:
    return Project(
        id=project_id,
        title=title,
        description="",
        sections=sections or [],
        created_at="2026-01-01T10:00:00.000Z",
        updated_at=updated_at,
    )


def make_section(section_id: str, title: str, parent_id: str | None = None, order: int = 0) -> Section:
    return Section(
        id=section_id,
        title=title,
        content=f"{title} body",
        created_at="2026-01-01T10:00:00.000Z",
        parent_id=parent_id,
        order=order,
    )
