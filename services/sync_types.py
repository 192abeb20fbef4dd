"""Value objects returned by :class:`services.sync_service.OfflineSyncManager`."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from datetime_utils import to_rfc3339_utc


class SyncOutcome(str, Enum):
    NOOP = "noop"
    DEFERRED = "deferred"
    ALREADY_IN_PROGRESS = "already_in_progress"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    synced: int = 0
    failed_action_id: Optional[str] = None
    terminal_ids: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome in (SyncOutcome.NOOP, SyncOutcome.COMPLETED)

    @classmethod
    def noop(cls) -> "SyncResult":
        return cls(SyncOutcome.NOOP)

    @classmethod
    def deferred(cls, synced: int = 0, terminal_ids: Tuple[str, ...] = ()) -> "SyncResult":
        return cls(SyncOutcome.DEFERRED, synced=synced, terminal_ids=terminal_ids)

    @classmethod
    def already_in_progress(cls) -> "SyncResult":
        return cls(SyncOutcome.ALREADY_IN_PROGRESS)


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot read by the presentation layer."""

    is_online: bool
    is_syncing: bool
    pending_count: int
    terminal_count: int = 0
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def has_pending_items(self) -> bool:
        return self.pending_count > 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isOnline": self.is_online,
            "isSyncing": self.is_syncing,
            "pendingCount": self.pending_count,
            "hasPendingItems": self.has_pending_items,
            "terminalCount": self.terminal_count,
            "lastSyncedAt": to_rfc3339_utc(self.last_synced_at),
            "lastError": self.last_error,
        }


__all__ = ["SyncOutcome", "SyncResult", "SyncStatus"]
