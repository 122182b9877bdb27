"""Sync scheduler: decides when local changes are pushed to the remote store.

Pushes happen:
- immediately when a project is created
- after a debounce window following any mutation (re-armed by every edit)
- on a fixed autosave interval, independent of the debounce
- on lifecycle events (blur, visibility hidden, page hide, before unload)
- on explicit "sync now"
- after a retry delay following any failed or skipped push

Timers are APScheduler jobs on an ``AsyncIOScheduler`` that is created on
``start()`` and torn down on ``stop()``. Nothing is pushed while stopped;
mutations only accumulate as dirty state until the next start.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError

from gdd_manager.models.project import Project, now_iso
from gdd_manager.models.sync import PersistenceConfig, PullResult, StoreChange, SyncResult, SyncState
from gdd_manager.sync.local_store import LocalStorage, LocalStore
from gdd_manager.sync.merge import merge_projects
from gdd_manager.sync.remote import RemoteAdapter
from gdd_manager.sync.status import SyncStatusProjection

logger = logging.getLogger(__name__)

PERSISTENCE_CONFIG_KEY = "gdd_persistence_config_v1"

DEBOUNCE_JOB_ID = "sync_debounce"
AUTOSAVE_JOB_ID = "sync_autosave"
RETRY_JOB_ID = "sync_retry"


class SyncTrigger(str, Enum):
    IMMEDIATE = "immediate"
    DEBOUNCE = "debounce"
    AUTOSAVE = "autosave"
    RETRY = "retry"
    BLUR = "blur"
    VISIBILITY_HIDDEN = "visibility_hidden"
    PAGE_HIDE = "page_hide"
    BEFORE_UNLOAD = "before_unload"
    MANUAL = "manual"


class LifecycleEvent(str, Enum):
    BLUR = "blur"
    VISIBILITY_HIDDEN = "visibility_hidden"
    PAGE_HIDE = "page_hide"
    BEFORE_UNLOAD = "before_unload"


# ---------------------------------------------------------------------------
# Persisted configuration
# ---------------------------------------------------------------------------

def load_persistence_config(storage: LocalStorage) -> PersistenceConfig:
    raw = storage.get(PERSISTENCE_CONFIG_KEY)
    if raw is None:
        return PersistenceConfig()
    try:
        return PersistenceConfig.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid persisted sync config: {e}")
        return PersistenceConfig()


def save_persistence_config(storage: LocalStorage, config: PersistenceConfig) -> None:
    try:
        storage.set(PERSISTENCE_CONFIG_KEY, config.model_dump(by_alias=True))
    except OSError as e:
        logger.warning(f"Could not persist sync config: {e}")


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class SyncScheduler:
    """Tracks dirty projects and pushes them through the remote adapter."""

    def __init__(
        self,
        store: LocalStore,
        adapter: RemoteAdapter,
        status: SyncStatusProjection | None = None,
        config: PersistenceConfig | None = None,
        retry_delay_ms: int = 3000,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._status = status or SyncStatusProjection()
        self._config = config or load_persistence_config(store.storage)
        self._retry_delay_ms = retry_delay_ms

        # project id -> generation of its latest unpushed mutation
        self._dirty: dict[str, int] = {}
        self._generation = 0
        self._pending_deletes: set[str] = set()
        self._errored: set[str] = set()
        self._in_flight = 0
        self._last_synced_at: str | None = None
        self._last_error: str | None = None

        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = store.subscribe(self._on_store_change)

    # -- introspection ------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def config(self) -> PersistenceConfig:
        return self._config

    @property
    def status(self) -> SyncStatusProjection:
        return self._status

    @property
    def state(self) -> SyncState:
        return self._status.state

    @property
    def dirty_ids(self) -> set[str]:
        return set(self._dirty)

    @property
    def pending_deletes(self) -> set[str]:
        return set(self._pending_deletes)

    def _publish(self) -> None:
        self._status.update(
            pending=len(self._dirty) + len(self._pending_deletes),
            in_flight=self._in_flight,
            errored=len(self._errored),
            last_synced_at=self._last_synced_at,
            last_sync_error=self._last_error,
        )

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Create the timers. Must be called from a running event loop."""
        if self._scheduler is not None:
            logger.warning("Sync scheduler already running")
            return
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._scheduler.start()
        self._schedule_autosave()
        if self._dirty or self._pending_deletes:
            self._arm_debounce()
        logger.info("Sync scheduler started")

    def stop(self) -> None:
        """Tear the timers down. In-flight pushes complete on their own."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Sync scheduler stopped")

    def restart(self) -> None:
        self.stop()
        self.start()

    def reset(self) -> None:
        """Forget all sync bookkeeping (used when the identity changes)."""
        self._dirty.clear()
        self._pending_deletes.clear()
        self._errored.clear()
        self._last_synced_at = None
        self._last_error = None
        self._publish()

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    def update_config(self, **changes: Any) -> PersistenceConfig:
        """Apply and persist config changes; re-arms the autosave timer."""
        self._config = PersistenceConfig.model_validate({**self._config.model_dump(), **changes})
        save_persistence_config(self._store.storage, self._config)
        if self._scheduler is not None:
            self._schedule_autosave()
        return self._config

    # -- timers -------------------------------------------------------------

    def _schedule_autosave(self) -> None:
        assert self._scheduler is not None
        self._scheduler.add_job(
            self.flush,
            IntervalTrigger(seconds=self._config.autosave_interval_ms / 1000),
            id=AUTOSAVE_JOB_ID,
            name="Periodic autosave",
            kwargs={"trigger": SyncTrigger.AUTOSAVE},
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def _arm_once(self, job_id: str, delay_ms: int, trigger: SyncTrigger) -> None:
        if self._scheduler is None:
            return
        run_at = datetime.now(UTC) + timedelta(milliseconds=delay_ms)
        self._scheduler.add_job(
            self.flush,
            DateTrigger(run_date=run_at),
            id=job_id,
            name=f"Sync ({trigger.value})",
            kwargs={"trigger": trigger},
            replace_existing=True,
            misfire_grace_time=None,
            max_instances=5,
        )

    def _arm_debounce(self) -> None:
        self._arm_once(DEBOUNCE_JOB_ID, self._config.debounce_ms, SyncTrigger.DEBOUNCE)

    def _arm_retry(self) -> None:
        logger.debug(f"Retry armed in {self._retry_delay_ms}ms")
        self._arm_once(RETRY_JOB_ID, self._retry_delay_ms, SyncTrigger.RETRY)

    # -- dirty tracking -----------------------------------------------------

    def mark_dirty(self, project_ids: Iterable[str]) -> None:
        for project_id in project_ids:
            self._generation += 1
            self._dirty[project_id] = self._generation
            self._pending_deletes.discard(project_id)
        self._arm_debounce()
        self._publish()

    def _on_store_change(self, project_id: str, change: StoreChange) -> None:
        if change is StoreChange.DELETED:
            self._dirty.pop(project_id, None)
            self._pending_deletes.add(project_id)
            self._arm_debounce()
            self._publish()
            return

        self.mark_dirty([project_id])
        if change is StoreChange.CREATED and self._scheduler is not None:
            self._push_soon(project_id)

    def _push_soon(self, project_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, project {project_id} waits for the debounce")
            return
        task = loop.create_task(self._push_ids([project_id], SyncTrigger.IMMEDIATE))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- pushing ------------------------------------------------------------

    def _resolve_projects(self, project_ids: list[str]) -> dict[str, tuple[Project, int | None]]:
        """Freshest copy of each project with the dirty generation it reflects.

        Memory is read first, then the durable snapshot. The generation is
        captured together with the copy so a later edit stays dirty.
        """
        generations = {pid: self._dirty.get(pid) for pid in project_ids}
        in_memory = {p.id: p for p in self._store.projects}
        found = {pid: in_memory[pid] for pid in project_ids if pid in in_memory}
        missing = [pid for pid in project_ids if pid not in found]
        if missing:
            snapshot = {p.id: p for p in self._store.read_snapshot()}
            for pid in missing:
                if pid in snapshot:
                    logger.debug(f"Project {pid} read from local snapshot")
                    found[pid] = snapshot[pid]
        return {pid: (project, generations[pid]) for pid, project in found.items()}

    async def _call_adapter(self, coro: Any, what: str) -> SyncResult:
        self._in_flight += 1
        self._publish()
        try:
            return await coro
        except Exception as e:
            logger.exception(f"Unexpected failure during {what}")
            return SyncResult(error=str(e) or e.__class__.__name__)
        finally:
            self._in_flight -= 1

    def _record(self, project_id: str, result: SyncResult) -> bool:
        if result.ok:
            self._errored.discard(project_id)
            self._last_synced_at = now_iso()
            if not self._errored:
                self._last_error = None
        elif result.unauthenticated:
            self._arm_retry()
        else:
            self._errored.add(project_id)
            self._last_error = result.error
            logger.error(f"Sync of project {project_id} failed: {result.error}")
            self._arm_retry()
        self._publish()
        return result.ok

    async def _push_project(self, project: Project, generation: int | None, trigger: SyncTrigger) -> bool:
        result = await self._call_adapter(self._adapter.upsert_project(project), f"push of {project.id}")
        if result.ok and generation is not None and self._dirty.get(project.id) == generation:
            del self._dirty[project.id]
        if result.ok:
            logger.info(f"Pushed project {project.id} ({trigger.value})")
        return self._record(project.id, result)

    async def _push_delete(self, project_id: str, trigger: SyncTrigger) -> bool:
        result = await self._call_adapter(self._adapter.delete_project(project_id), f"delete of {project_id}")
        if result.ok:
            self._pending_deletes.discard(project_id)
            logger.info(f"Deleted remote project {project_id} ({trigger.value})")
        return self._record(project_id, result)

    async def _push_ids(self, project_ids: list[str], trigger: SyncTrigger) -> None:
        resolved = self._resolve_projects(project_ids)
        for pid in project_ids:
            if pid not in resolved:
                logger.debug(f"Dirty project {pid} no longer exists locally, dropping")
                self._dirty.pop(pid, None)
                self._publish()
                continue
            project, generation = resolved[pid]
            await self._push_project(project, generation, trigger)

    async def flush(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> bool:
        """Push every pending delete and dirty project. Returns True when nothing is left pending."""
        if self._scheduler is None:
            logger.debug(f"Flush ({trigger.value}) ignored: scheduler stopped")
            return False
        if not self._dirty and not self._pending_deletes:
            return True

        logger.debug(
            f"Flush ({trigger.value}): {len(self._pending_deletes)} deletes, {len(self._dirty)} upserts"
        )
        for project_id in list(self._pending_deletes):
            await self._push_delete(project_id, trigger)
        await self._push_ids(list(self._dirty), trigger)
        return not self._dirty and not self._pending_deletes

    async def handle_event(self, event: LifecycleEvent) -> bool:
        """Flush on a lifecycle event if its config flag is on. Returns True if flushed."""
        enabled = {
            LifecycleEvent.BLUR: self._config.sync_on_blur,
            LifecycleEvent.VISIBILITY_HIDDEN: self._config.sync_on_visibility_hidden,
            LifecycleEvent.PAGE_HIDE: self._config.sync_on_page_hide,
            LifecycleEvent.BEFORE_UNLOAD: self._config.sync_on_before_unload,
        }[event]
        if not enabled:
            return False
        await self.flush(SyncTrigger(event.value))
        return True

    async def drain(self) -> None:
        """Wait for outstanding immediate pushes."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- session start ------------------------------------------------------

    async def pull_and_merge(self) -> PullResult:
        """Fetch remote projects and merge them into the local store.

        An empty remote leaves the store untouched and returns EMPTY so the
        caller can decide whether a first-time migration is due.
        """
        remote = await self._adapter.fetch_all()
        if remote is None:
            logger.warning("Remote fetch failed, staying local-only")
            return PullResult.ERROR
        if not remote:
            return PullResult.EMPTY

        remote = [p for p in remote if p.id not in self._pending_deletes]
        local = self._store.projects or self._store.read_snapshot()
        result = merge_projects(local, remote)
        self._store.replace_all(result.projects)

        push_ids = set(result.push_ids)
        for p in remote:
            if p.id not in push_ids:
                self._dirty.pop(p.id, None)
        if push_ids:
            self.mark_dirty(result.push_ids)
        else:
            self._publish()
        logger.info(
            f"Merged {len(local)} local and {len(remote)} remote projects; {len(push_ids)} to push"
        )
        return PullResult.LOADED
