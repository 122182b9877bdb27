"""Remote adapter: reads and writes projects against the remote store.

Writes try the server sync endpoint first and fall back to a direct
database write only when the endpoint cannot be reached. An explicit
"unauthenticated" answer from the endpoint is reported as such and never
retried through the fallback.
"""

import logging
import time
from typing import Any

import httpx
from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from gdd_manager.db.exceptions import DatabaseError
from gdd_manager.models.project import Project
from gdd_manager.models.sync import UNAUTHENTICATED, MigrationResult, SyncResult
from gdd_manager.services import project_sync

logger = logging.getLogger(__name__)

SYNC_ROUTE = "/api/projects/sync"
ME_ROUTE = "/api/auth/me"

# Status codes that mean "the endpoint is not there / not working", not "no".
_FALLBACK_STATUSES = {404, 405}

_DIRECT_ERRORS = (DatabaseError, SQLAlchemyError, OSError)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class AuthSession:
    """Holds the cached access token and resolves the current identity."""

    def __init__(self, http: httpx.AsyncClient, token: str | None = None) -> None:
        self._http = http
        self._token = token

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    def headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def cached_user_id(self) -> str | None:
        """Identity from the cached token's claims, without any network call."""
        if not self._token:
            return None
        try:
            claims = jwt.get_unverified_claims(self._token)
        except JWTError:
            logger.debug("Cached session token is not a readable JWT")
            return None
        exp = claims.get("exp")
        if isinstance(exp, (int, float)) and exp <= time.time():
            return None
        sub = claims.get("sub")
        return sub if isinstance(sub, str) and sub else None

    async def fetch_user_id(self) -> str | None:
        """Ask the server who we are."""
        try:
            response = await self._http.get(ME_ROUTE, headers=self.headers())
        except httpx.HTTPError as e:
            logger.warning(f"Identity check failed: {e}")
            return None
        if response.status_code != 200:
            return None
        try:
            user_id = response.json().get("id")
        except ValueError:
            return None
        return user_id if isinstance(user_id, str) and user_id else None

    async def resolve_user_id(self) -> str | None:
        """Cached identity first, network check only when the cache is empty."""
        return self.cached_user_id() or await self.fetch_user_id()


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class RemoteAdapter:
    """Stateless read/write operations against the remote store."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: AuthSession,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._http = http
        self._auth = auth
        self._session_factory = session_factory

    @property
    def auth(self) -> AuthSession:
        return self._auth

    # -- server route -------------------------------------------------------

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.25, max=2),
        retry=retry_if_exception_type((httpx.ConnectError,)),
        reraise=True,
    )
    async def _call_route(self, method: str, payload: dict[str, Any]) -> httpx.Response:
        return await self._http.request(method, SYNC_ROUTE, json=payload, headers=self._auth.headers())

    async def _via_route(self, method: str, payload: dict[str, Any]) -> SyncResult | None:
        """Call the sync endpoint. ``None`` means the fallback should be used."""
        try:
            response = await self._call_route(method, payload)
        except httpx.TransportError as e:
            logger.warning(f"Sync route {method} unreachable, falling back: {e!r}")
            return None

        if response.status_code in _FALLBACK_STATUSES or response.status_code >= 500:
            logger.warning(f"Sync route {method} answered {response.status_code}, falling back")
            return None
        if response.status_code == 401:
            return SyncResult(skipped_reason=UNAUTHENTICATED)
        if response.is_success:
            return SyncResult()
        return SyncResult(error=_error_message(response, f"sync_route_failed_{response.status_code}"))

    # -- operations ---------------------------------------------------------

    async def upsert_project(self, project: Project, user_id_hint: str | None = None) -> SyncResult:
        """Write a whole project (project row, sections, tombstones)."""
        routed = await self._via_route("POST", {"project": project.to_dict()})
        if routed is not None:
            if routed.unauthenticated:
                logger.warning(f"Upsert of project {project.id} skipped: unauthenticated")
            return routed

        if self._session_factory is None:
            return SyncResult(error="sync route unavailable and no direct remote store configured")

        user_id = user_id_hint or await self._auth.resolve_user_id()
        if not user_id:
            logger.warning(f"Upsert of project {project.id} skipped: unauthenticated")
            return SyncResult(skipped_reason=UNAUTHENTICATED)

        try:
            async with self._session_factory() as db:
                await project_sync.apply_project_sync(db, user_id, project)
                await db.commit()
        except _DIRECT_ERRORS as e:
            logger.error(f"Direct upsert of project {project.id} failed: {e}")
            return SyncResult(error=str(e) or e.__class__.__name__)
        return SyncResult()

    async def delete_project(self, project_id: str) -> SyncResult:
        routed = await self._via_route("DELETE", {"projectId": project_id})
        if routed is not None:
            return routed

        if self._session_factory is None:
            return SyncResult(error="sync route unavailable and no direct remote store configured")

        user_id = await self._auth.resolve_user_id()
        if not user_id:
            logger.warning(f"Delete of project {project_id} skipped: unauthenticated")
            return SyncResult(skipped_reason=UNAUTHENTICATED)

        try:
            async with self._session_factory() as db:
                await project_sync.delete_project_for_owner(db, user_id, project_id)
                await db.commit()
        except _DIRECT_ERRORS as e:
            logger.error(f"Direct delete of project {project_id} failed: {e}")
            return SyncResult(error=str(e) or e.__class__.__name__)
        return SyncResult()

    async def fetch_all(self) -> list[Project] | None:
        """All projects of the current identity, or ``None`` if they cannot be read."""
        if self._session_factory is None:
            logger.warning("No remote store configured, cannot fetch projects")
            return None
        user_id = await self._auth.resolve_user_id()
        if not user_id:
            logger.warning("Fetch skipped: unauthenticated")
            return None
        try:
            async with self._session_factory() as db:
                projects = await project_sync.load_projects_for_owner(db, user_id)
        except _DIRECT_ERRORS as e:
            logger.warning(f"Failed to fetch remote projects: {e}")
            return None
        logger.info(f"Fetched {len(projects)} remote projects")
        return projects

    async def migrate_local(self, projects: list[Project], user_id: str) -> MigrationResult:
        """Push every local project under ``user_id``, one at a time."""
        result = MigrationResult()
        for project in projects:
            outcome = await self.upsert_project(project, user_id)
            if outcome.ok:
                result.migrated += 1
            else:
                result.errors += 1
        logger.info(f"Migrated {result.migrated} local projects for {user_id} ({result.errors} errors)")
        return result


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    if isinstance(body, dict) and isinstance(body.get("detail"), str):
        return body["detail"]
    return default
