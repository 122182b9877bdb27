"""Local-first client: wires the store, adapter, scheduler and session together.

Usage::

    async with SyncClient() as client:
        await client.session.login(user_id, token)
        project_id = client.store.add_project("My Game", "")
        ...
"""

import logging
from pathlib import Path

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gdd_manager.config import Settings, settings as default_settings
from gdd_manager.models.sync import PersistenceConfig
from gdd_manager.sync.local_store import LocalStorage, LocalStore
from gdd_manager.sync.remote import AuthSession, RemoteAdapter
from gdd_manager.sync.scheduler import (
    PERSISTENCE_CONFIG_KEY,
    LifecycleEvent,
    SyncScheduler,
    load_persistence_config,
)
from gdd_manager.sync.session import SyncSession
from gdd_manager.sync.status import SyncStatusProjection

logger = logging.getLogger(__name__)


class SyncClient:
    """Composition root for the offline-first project client."""

    def __init__(
        self,
        settings: Settings | None = None,
        http: httpx.AsyncClient | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        storage_path: str | Path | None = None,
        direct_fallback: bool = True,
    ) -> None:
        cfg = settings or default_settings

        self.storage = LocalStorage(storage_path or cfg.local_storage_path)
        self.store = LocalStore(self.storage)

        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=cfg.api_base_url,
            timeout=cfg.sync_route_timeout_seconds,
        )

        if session_factory is None and direct_fallback:
            from gdd_manager.db.database import async_session_factory

            session_factory = async_session_factory

        self.auth = AuthSession(self.http)
        self.adapter = RemoteAdapter(self.http, self.auth, session_factory)
        self.status = SyncStatusProjection()

        if self.storage.get(PERSISTENCE_CONFIG_KEY) is None:
            persistence = PersistenceConfig(
                debounce_ms=cfg.sync_debounce_ms,
                autosave_interval_ms=cfg.sync_autosave_interval_ms,
            )
        else:
            persistence = load_persistence_config(self.storage)

        self.scheduler = SyncScheduler(
            self.store,
            self.adapter,
            status=self.status,
            config=persistence,
            retry_delay_ms=cfg.sync_retry_delay_ms,
        )
        self.session = SyncSession(self.store, self.adapter, self.scheduler, self.auth)
        self.store.load_from_storage()

    async def aclose(self) -> None:
        """Flush what is pending (before-unload) and release resources."""
        if self.session.user_id is not None:
            await self.session.handle_event(LifecycleEvent.BEFORE_UNLOAD)
        await self.scheduler.drain()
        self.scheduler.close()
        if self._owns_http:
            await self.http.aclose()
        logger.debug("Sync client closed")

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
