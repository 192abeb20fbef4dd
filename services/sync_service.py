from __future__ import annotations

import dataclasses
import logging
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.settings import SYNC, OfflineSyncSettings
from datetime_utils import utc_now
from services.connectivity import ConnectivityMonitor, ConnectivityRegistration
from services.pending_actions_queue import PendingAction, PendingActionsQueue
from services.sync_errors import TerminalSyncFailure, TransientSyncFailure
from services.sync_types import SyncOutcome, SyncResult, SyncStatus


EVENT_STATUS_CHANGED = "status_changed"
EVENT_SYNC_FINISHED = "sync_finished"


def _ensure_logger(log_path: Path | str = SYNC.log_path) -> logging.Logger:
    logger = logging.getLogger("learnrelax.sync")
    if not logger.handlers:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


class OfflineSyncManager:
    """Owns the offline action queue and replays it when connectivity allows.

    ``client`` is anything with a ``send(action)`` method that raises
    :class:`TransientSyncFailure` or :class:`TerminalSyncFailure`
    (normally :class:`services.api_client.RemoteApiClient`).

    At most one :meth:`sync` runs at a time; a concurrent call returns
    ``ALREADY_IN_PROGRESS`` instead of waiting. Queue mutations are serialised
    behind a short lock that is never held across a network call, and
    :meth:`get_status` only reads an immutable snapshot.
    """

    def __init__(
        self,
        client,
        queue: Optional[PendingActionsQueue] = None,
        *,
        monitor: Optional[ConnectivityMonitor] = None,
        settings: OfflineSyncSettings = SYNC,
        logger: Optional[logging.Logger] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self.client = client
        self.queue = queue or PendingActionsQueue()
        self.settings = settings
        self.logger = logger or _ensure_logger(settings.log_path)
        self._timer_factory = timer_factory

        self._listeners: Dict[str, List[Callable[[Any], None]]] = {
            EVENT_STATUS_CHANGED: [],
            EVENT_SYNC_FINISHED: [],
        }
        self._sync_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._timer_lock = threading.Lock()
        self._timer = None
        self._monitor: Optional[ConnectivityMonitor] = None
        self._registration: Optional[ConnectivityRegistration] = None
        self._online = True

        with self._state_lock:
            recovered = self.queue.recover_interrupted()
            self._status = SyncStatus(
                is_online=True,
                is_syncing=False,
                pending_count=self.queue.count(),
                terminal_count=self.queue.count_terminal(),
            )
        if recovered:
            self.logger.warning("Recovered %s action(s) interrupted mid-sync", recovered)

        if monitor is not None:
            self.attach(monitor)

    # ------------------------------------------------------------------
    # Subscriptions
    def subscribe(self, event: str, callback: Callable[[Any], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unsupported event: {event}")
        self._listeners[event].append(callback)

    def unsubscribe(self, event: str, callback: Callable[[Any], None]) -> None:
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def _emit(self, event: str, value: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(value)
            except Exception:
                self.logger.exception("Listener for %s failed", event)

    # ------------------------------------------------------------------
    # Status
    def get_status(self) -> SyncStatus:
        return self._status

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def monitor(self) -> Optional[ConnectivityMonitor]:
        return self._monitor

    def _publish(self, **changes: Any) -> None:
        with self._state_lock:
            self._status = dataclasses.replace(self._status, **changes)
            status = self._status
        self._emit(EVENT_STATUS_CHANGED, status)

    def _refresh_counts(self, **changes: Any) -> None:
        with self._state_lock:
            changes["pending_count"] = self.queue.count()
            changes["terminal_count"] = self.queue.count_terminal()
        self._publish(**changes)

    # ------------------------------------------------------------------
    # Queue operations
    def enqueue(self, kind: str, payload: Mapping[str, Any]) -> PendingAction:
        with self._state_lock:
            action = self.queue.enqueue(kind, payload)
        self.logger.info("Queued %s action %s", action.kind, action.id)
        self._refresh_counts()
        return action

    def actions(self) -> List[PendingAction]:
        with self._state_lock:
            return self.queue.all()

    def failed_actions(self) -> List[PendingAction]:
        with self._state_lock:
            return self.queue.terminal()

    def discard(self, action_id: str) -> bool:
        with self._state_lock:
            removed = self.queue.remove(action_id)
        if removed:
            self.logger.info("Discarded action %s", action_id)
            self._refresh_counts()
        return removed

    def retry(self, action_id: str) -> Optional[PendingAction]:
        with self._state_lock:
            action = self.queue.requeue(action_id)
        if action:
            self.logger.info("Action %s returned to the queue", action_id)
            self._refresh_counts()
        return action

    # ------------------------------------------------------------------
    # Sync
    def sync(self) -> SyncResult:
        if not self._sync_lock.acquire(blocking=False):
            self.logger.debug("Sync requested while another one is running")
            return SyncResult.already_in_progress()
        try:
            result = self._run_sync()
        finally:
            self._sync_lock.release()
        self._emit(EVENT_SYNC_FINISHED, result)
        return result

    def _run_sync(self) -> SyncResult:
        with self._state_lock:
            pending = self.queue.count()
        if pending == 0:
            return SyncResult.noop()
        if not self._online:
            self.logger.info("Offline, deferring sync of %s action(s)", pending)
            return SyncResult.deferred()

        self._publish(is_syncing=True)
        synced = 0
        terminal_ids: List[str] = []
        try:
            while True:
                if not self._online:
                    self.logger.info("Connection lost after %s action(s), deferring the rest", synced)
                    return SyncResult.deferred(synced, tuple(terminal_ids))

                with self._state_lock:
                    action = self.queue.head()
                    if action is None:
                        break
                    self.queue.mark_syncing(action.id)

                try:
                    self.client.send(action)
                except TerminalSyncFailure as exc:
                    self.logger.warning(
                        "Action %s (%s) rejected with %s: %s",
                        action.id, action.kind, exc.status_code, exc.message,
                    )
                    self._record_failure(action, exc.message, exc.status_code, terminal=True)
                    terminal_ids.append(action.id)
                    continue
                except TransientSyncFailure as exc:
                    self.logger.warning(
                        "Action %s (%s) failed, will retry: %s", action.id, action.kind, exc.message
                    )
                    self._record_failure(action, exc.message, exc.status_code, terminal=False)
                    return SyncResult(
                        SyncOutcome.PARTIAL_FAILURE,
                        synced=synced,
                        failed_action_id=action.id,
                        terminal_ids=tuple(terminal_ids),
                    )
                except Exception as exc:
                    self.logger.exception("Action %s (%s) crashed", action.id, action.kind)
                    self._record_failure(action, str(exc), None, terminal=False)
                    return SyncResult(
                        SyncOutcome.PARTIAL_FAILURE,
                        synced=synced,
                        failed_action_id=action.id,
                        terminal_ids=tuple(terminal_ids),
                    )

                with self._state_lock:
                    self.queue.remove(action.id)
                synced += 1
                self.logger.debug("Action %s (%s) synced", action.id, action.kind)
                self._refresh_counts(last_synced_at=utc_now(), last_error=None)
        finally:
            self._publish(is_syncing=False)

        self.logger.info("Sync complete: %s synced, %s rejected", synced, len(terminal_ids))
        return SyncResult(SyncOutcome.COMPLETED, synced=synced, terminal_ids=tuple(terminal_ids))

    def _record_failure(
        self,
        action: PendingAction,
        message: str,
        status_code: Optional[int],
        *,
        terminal: bool,
    ) -> None:
        with self._state_lock:
            self.queue.mark_failed(action.id, message, status_code=status_code, terminal=terminal)
        self._refresh_counts(last_error=message)

    # ------------------------------------------------------------------
    # Connectivity
    def attach(self, monitor: ConnectivityMonitor) -> ConnectivityRegistration:
        self.detach()
        self._monitor = monitor
        self._registration = monitor.register(self._on_connectivity_change)
        self._online = monitor.is_online
        self._publish(is_online=self._online)
        return self._registration

    def detach(self) -> None:
        if self._registration is not None:
            self._registration.close()
        self._registration = None
        self._monitor = None

    def _on_connectivity_change(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        self._publish(is_online=online)
        if online and not was_online:
            self._schedule_auto_sync()
        elif not online:
            self._cancel_auto_sync()

    def _schedule_auto_sync(self) -> None:
        if not self.settings.auto_sync:
            return
        delay = self.settings.reconnect_debounce_sec
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if delay > 0:
                timer = self._timer_factory(delay, self._auto_sync)
                timer.daemon = True
                self._timer = timer
                timer.start()
                return
        self._auto_sync()

    def _cancel_auto_sync(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _auto_sync(self) -> None:
        with self._timer_lock:
            self._timer = None
        if not self._online or not self._status.has_pending_items:
            return
        self.logger.info("Back online, syncing %s pending action(s)", self._status.pending_count)
        self.sync()

    # ------------------------------------------------------------------
    def close(self) -> None:
        self._cancel_auto_sync()
        self.detach()

    def __enter__(self) -> "OfflineSyncManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "EVENT_STATUS_CHANGED",
    "EVENT_SYNC_FINISHED",
    "OfflineSyncManager",
]
