"""Login / logout orchestration for the local-first client."""

import logging

from gdd_manager.models.sync import MigrationResult, PullResult
from gdd_manager.sync.local_store import LocalStore
from gdd_manager.sync.remote import AuthSession, RemoteAdapter
from gdd_manager.sync.scheduler import LifecycleEvent, SyncScheduler, SyncTrigger

logger = logging.getLogger(__name__)

MIGRATED_USERS_KEY = "gdd_migrated_users_v1"


class SyncSession:
    """Binds the current identity to the sync scheduler.

    On login the scheduler timers are recreated and remote state is pulled
    and merged. The first login of an identity that finds an empty remote
    store uploads the local collection once.
    """

    def __init__(
        self,
        store: LocalStore,
        adapter: RemoteAdapter,
        scheduler: SyncScheduler,
        auth: AuthSession,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._scheduler = scheduler
        self._auth = auth
        self._user_id: str | None = None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def _migrated_users(self) -> set[str]:
        raw = self._store.storage.get(MIGRATED_USERS_KEY, [])
        return {u for u in raw if isinstance(u, str)} if isinstance(raw, list) else set()

    def _remember_migrated(self, user_id: str) -> None:
        users = self._migrated_users() | {user_id}
        try:
            self._store.storage.set(MIGRATED_USERS_KEY, sorted(users))
        except OSError as e:
            logger.warning(f"Could not persist migration marker for {user_id}: {e}")

    async def login(self, user_id: str, token: str | None = None) -> PullResult:
        if token is not None:
            self._auth.set_token(token)
        self._user_id = user_id
        self._scheduler.restart()

        if not self._store.projects:
            self._store.load_from_storage()

        result = await self._scheduler.pull_and_merge()
        if result is PullResult.EMPTY:
            await self._handle_empty_remote(user_id)
        elif result is PullResult.ERROR:
            self._store.load_from_storage()
        logger.info(f"Session started for {user_id}: {result.value}")
        return result

    async def _handle_empty_remote(self, user_id: str) -> MigrationResult | None:
        local = self._store.projects
        if not local:
            return None
        if user_id in self._migrated_users():
            self._scheduler.mark_dirty(p.id for p in local)
            return None

        self._remember_migrated(user_id)
        outcome = await self._adapter.migrate_local(local, user_id)
        if outcome.errors:
            self._scheduler.mark_dirty(p.id for p in local)
        if outcome.migrated > 0:
            await self._scheduler.pull_and_merge()
        return outcome

    async def logout(self) -> None:
        self._scheduler.stop()
        self._auth.clear()
        self._user_id = None
        self._store.load_from_storage()
        logger.info("Session ended, using local snapshot")

    async def handle_event(self, event: LifecycleEvent) -> bool:
        if self._user_id is None:
            return False
        return await self._scheduler.handle_event(event)

    async def sync_now(self) -> bool:
        return await self._scheduler.flush(SyncTrigger.MANUAL)
