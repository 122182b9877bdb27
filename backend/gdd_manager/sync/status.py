"""Sync status projection.

Derives the badge-facing ``SyncState`` from the scheduler's bookkeeping
and notifies listeners whenever the derived value changes.
"""

import logging
from collections.abc import Callable

from gdd_manager.models.sync import SyncState, SyncStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncState], None]


def derive_status(
    pending: int,
    in_flight: int,
    errored: int,
    last_synced_at: str | None,
) -> SyncStatus:
    """Pick the badge status for the given counters."""
    if in_flight > 0:
        return SyncStatus.SYNCING
    if errored > 0:
        return SyncStatus.ERROR
    if pending == 0 and last_synced_at is not None:
        return SyncStatus.SYNCED
    return SyncStatus.IDLE


class SyncStatusProjection:
    """Holds the latest ``SyncState`` and fans it out to subscribers."""

    def __init__(self) -> None:
        self._state = SyncState()
        self._listeners: list[StatusListener] = []

    @property
    def state(self) -> SyncState:
        return self._state

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(
        self,
        *,
        pending: int,
        in_flight: int,
        errored: int,
        last_synced_at: str | None,
        last_sync_error: str | None,
    ) -> SyncState:
        state = SyncState(
            sync_status=derive_status(pending, in_flight, errored, last_synced_at),
            pending_sync_count=pending,
            last_synced_at=last_synced_at,
            last_sync_error=last_sync_error,
        )
        if state != self._state:
            self._state = state
            for listener in list(self._listeners):
                try:
                    listener(state)
                except Exception:
                    logger.exception("Sync status listener failed")
        return self._state

    def reset(self) -> SyncState:
        return self.update(pending=0, in_flight=0, errored=0, last_synced_at=None, last_sync_error=None)
