"""Sync configuration, results and observable state."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

UNAUTHENTICATED = "unauthenticated"


class PersistenceConfig(BaseModel):
    """Runtime-adjustable sync tunables, persisted next to the snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    debounce_ms: int = Field(default=1500, alias="debounceMs", ge=0)
    autosave_interval_ms: int = Field(default=30000, alias="autosaveIntervalMs", gt=0)
    sync_on_blur: bool = Field(default=True, alias="syncOnBlur")
    sync_on_visibility_hidden: bool = Field(default=True, alias="syncOnVisibilityHidden")
    sync_on_page_hide: bool = Field(default=True, alias="syncOnPageHide")
    sync_on_before_unload: bool = Field(default=True, alias="syncOnBeforeUnload")


class SyncResult(BaseModel):
    """Outcome of a single remote write.

    ``error`` set means a hard failure. ``skipped_reason`` set means the
    write was not attempted (no identity) and should be retried later.
    """

    error: str | None = None
    skipped_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.skipped_reason is None

    @property
    def unauthenticated(self) -> bool:
        return self.skipped_reason == UNAUTHENTICATED


class MigrationResult(BaseModel):
    """Outcome of the one-time local to remote migration."""

    migrated: int = 0
    errors: int = 0


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class SyncState(BaseModel):
    """Observable sync state consumed by status badges."""

    model_config = ConfigDict(populate_by_name=True)

    sync_status: SyncStatus = Field(default=SyncStatus.IDLE, alias="syncStatus")
    pending_sync_count: int = Field(default=0, alias="pendingSyncCount")
    last_synced_at: str | None = Field(default=None, alias="lastSyncedAt")
    last_sync_error: str | None = Field(default=None, alias="lastSyncError")


class PullResult(str, Enum):
    """Outcome of the session-start pull."""

    LOADED = "loaded"
    EMPTY = "empty"
    ERROR = "error"


class StoreChange(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
