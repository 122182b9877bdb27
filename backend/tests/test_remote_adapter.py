"""Tests for the remote adapter and identity resolution."""

import json
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from conftest import make_project, make_section

from gdd_manager.api.dependencies import create_access_token
from gdd_manager.db.repositories import project_repo
from gdd_manager.services import project_sync
from gdd_manager.sync.remote import ME_ROUTE, SYNC_ROUTE, AuthSession, RemoteAdapter


class RouteStub:
    """MockTransport handler recording calls and replaying canned answers."""

    def __init__(self, sync=None, me=None):
        self.sync = sync or (lambda request: httpx.Response(200, json={"ok": True}))
        self.me = me or (lambda request: httpx.Response(401, json={"detail": "Authentication required"}))
        self.calls: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if request.url.path == SYNC_ROUTE:
            return self.sync(request)
        if request.url.path == ME_ROUTE:
            return self.me(request)
        return httpx.Response(404)

    def count(self, path):
        return sum(1 for _, p in self.calls if p == path)


@pytest_asyncio.fixture
async def make_adapter(session_factory):
    clients = []

    def _make(stub, token=None, direct=True):
        http = httpx.AsyncClient(transport=httpx.MockTransport(stub), base_url="http://api.test")
        clients.append(http)
        auth = AuthSession(http, token=token)
        return RemoteAdapter(http, auth, session_factory if direct else None)

    yield _make
    for client in clients:
        await client.aclose()


def _boom(request):
    raise httpx.ConnectError("connection refused", request=request)


# ---------------------------------------------------------------------------
# AuthSession
# ---------------------------------------------------------------------------

class TestAuthSession:
    def test_cached_user_id_reads_token_claims(self, token, user_id):
        auth = AuthSession(MagicMock(), token=token)
        assert auth.cached_user_id() == user_id

    def test_cached_user_id_ignores_expired_and_garbage_tokens(self):
        assert AuthSession(MagicMock(), token=create_access_token("u", expires_minutes=-1)).cached_user_id() is None
        assert AuthSession(MagicMock(), token="garbage").cached_user_id() is None
        assert AuthSession(MagicMock()).cached_user_id() is None

    async def test_resolve_prefers_cache_over_network(self, make_adapter, token, user_id):
        stub = RouteStub(me=lambda request: httpx.Response(200, json={"id": "from-network"}))
        adapter = make_adapter(stub, token=token)

        assert await adapter.auth.resolve_user_id() == user_id
        assert stub.count(ME_ROUTE) == 0

    async def test_resolve_falls_back_to_network_check(self, make_adapter):
        stub = RouteStub(me=lambda request: httpx.Response(200, json={"id": "from-network"}))
        adapter = make_adapter(stub)

        assert await adapter.auth.resolve_user_id() == "from-network"
        assert stub.count(ME_ROUTE) == 1


# ---------------------------------------------------------------------------
# upsert_project
# ---------------------------------------------------------------------------

class TestUpsert:
    async def test_route_success_skips_fallback(self, make_adapter, token):
        seen = []

        def sync(request):
            seen.append(json.loads(request.content))
            assert request.headers["Authorization"] == f"Bearer {token}"
            return httpx.Response(200, json={"ok": True})

        adapter = make_adapter(RouteStub(sync=sync), token=token, direct=False)
        result = await adapter.upsert_project(make_project("p1"))

        assert result.ok
        assert seen[0]["project"]["id"] == "p1"
        assert seen[0]["project"]["updatedAt"] == "2026-01-01T12:00:00.000Z"

    async def test_route_401_is_reported_as_unauthenticated_without_fallback(self, make_adapter, token, db):
        stub = RouteStub(sync=lambda request: httpx.Response(401, json={"error": "unauthenticated"}))
        adapter = make_adapter(stub, token=token)

        result = await adapter.upsert_project(make_project("p1"))

        assert result.error is None
        assert result.unauthenticated
        assert await project_repo.get_project(db, "p1") is None

    async def test_route_400_is_a_hard_error(self, make_adapter, token):
        stub = RouteStub(sync=lambda request: httpx.Response(400, json={"error": "project is required"}))
        adapter = make_adapter(stub, token=token)

        result = await adapter.upsert_project(make_project("p1"))

        assert result.error == "project is required"

    async def test_route_5xx_falls_back_to_direct_write(self, make_adapter, token, user_id, db):
        stub = RouteStub(sync=lambda request: httpx.Response(503))
        adapter = make_adapter(stub, token=token)

        result = await adapter.upsert_project(make_project("p1", sections=[make_section("s1", "Story")]))

        assert result.ok
        row = await project_repo.get_project(db, "p1")
        assert row.owner_id == user_id

    async def test_connect_error_is_retried_once_then_falls_back(self, make_adapter, token, db):
        stub = RouteStub(sync=_boom)
        adapter = make_adapter(stub, token=token)

        result = await adapter.upsert_project(make_project("p1"))

        assert result.ok
        assert stub.count(SYNC_ROUTE) == 2
        assert await project_repo.get_project(db, "p1") is not None

    async def test_fallback_without_identity_is_skipped(self, make_adapter, db):
        stub = RouteStub(sync=lambda request: httpx.Response(404))
        adapter = make_adapter(stub)

        result = await adapter.upsert_project(make_project("p1"))

        assert result.error is None
        assert result.unauthenticated
        assert stub.count(ME_ROUTE) == 1
        assert await project_repo.get_project(db, "p1") is None

    async def test_fallback_uses_identity_hint(self, make_adapter, db):
        adapter = make_adapter(RouteStub(sync=lambda request: httpx.Response(404)))

        result = await adapter.upsert_project(make_project("p1"), user_id_hint="hinted")

        assert result.ok
        assert (await project_repo.get_project(db, "p1")).owner_id == "hinted"

    async def test_fallback_write_failure_is_a_hard_error(self, make_adapter, token, session_factory):
        async with session_factory() as session:
            await project_sync.apply_project_sync(session, "someone-else", make_project("p1"))
            await session.commit()
        adapter = make_adapter(RouteStub(sync=lambda request: httpx.Response(500)), token=token)

        result = await adapter.upsert_project(make_project("p1"))

        assert result.error and "another owner" in result.error

    async def test_no_route_and_no_direct_store_is_a_hard_error(self, make_adapter, token):
        adapter = make_adapter(RouteStub(sync=_boom), token=token, direct=False)

        result = await adapter.upsert_project(make_project("p1"))

        assert result.error


# ---------------------------------------------------------------------------
# delete / fetch / migrate
# ---------------------------------------------------------------------------

class TestOtherOperations:
    async def test_delete_via_route(self, make_adapter, token):
        bodies = []

        def sync(request):
            bodies.append((request.method, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        adapter = make_adapter(RouteStub(sync=sync), token=token)

        assert (await adapter.delete_project("p1")).ok
        assert bodies == [("DELETE", {"projectId": "p1"})]

    async def test_delete_fallback(self, make_adapter, token, user_id, session_factory, db):
        async with session_factory() as session:
            await project_sync.apply_project_sync(session, user_id, make_project("p1"))
            await session.commit()
        adapter = make_adapter(RouteStub(sync=lambda request: httpx.Response(502)), token=token)

        assert (await adapter.delete_project("p1")).ok
        assert await project_repo.get_project(db, "p1") is None

    async def test_fetch_all_without_identity_returns_none(self, make_adapter):
        adapter = make_adapter(RouteStub())
        assert await adapter.fetch_all() is None

    async def test_fetch_all_returns_owner_projects(self, make_adapter, token, user_id, session_factory):
        async with session_factory() as session:
            await project_sync.apply_project_sync(session, user_id, make_project("mine"))
            await project_sync.apply_project_sync(session, "other", make_project("theirs"))
            await session.commit()
        adapter = make_adapter(RouteStub(), token=token)

        projects = await adapter.fetch_all()

        assert [p.id for p in projects] == ["mine"]

    async def test_fetch_all_read_failure_returns_none(self, token):
        http = httpx.AsyncClient(transport=httpx.MockTransport(RouteStub()), base_url="http://api.test")

        def broken_factory():
            raise OSError("database unreachable")

        adapter = RemoteAdapter(http, AuthSession(http, token=token), broken_factory)

        assert await adapter.fetch_all() is None
        await http.aclose()

    async def test_migrate_local_counts_outcomes(self, make_adapter, token):
        def sync(request):
            project_id = json.loads(request.content)["project"]["id"]
            if project_id == "bad":
                return httpx.Response(400, json={"error": "invalid project"})
            return httpx.Response(200, json={"ok": True})

        adapter = make_adapter(RouteStub(sync=sync), token=token)

        result = await adapter.migrate_local([make_project("a"), make_project("bad"), make_project("b")], "user-1")

        assert (result.migrated, result.errors) == (2, 1)
