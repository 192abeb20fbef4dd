import threading

import pytest

from core.settings import OfflineSyncSettings
from models.pending_action import STATUS_FAILED
from services.connectivity import ConnectivityMonitor
from services.pending_actions_queue import PendingActionsQueue
from services.sync_errors import InvalidActionKind, TerminalSyncFailure, TransientSyncFailure
from services.sync_service import EVENT_STATUS_CHANGED, EVENT_SYNC_FINISHED, OfflineSyncManager
from services.sync_types import SyncOutcome
from storage.db import create_queue_engine, init_db, session_factory_for


class FakeClient:
    """Records transmissions; ``failures`` maps a payload ``tag`` to the error to raise."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.sent = []

    def send(self, action):
        self.sent.append(action)
        failure = self.failures.get(action.payload.get("tag"))
        if failure is not None:
            raise failure
        return {"success": True}

    def tags(self):
        return [action.payload.get("tag") for action in self.sent]


class BlockingClient(FakeClient):
    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def send(self, action):
        self.started.set()
        assert self.release.wait(5)
        return super().send(action)


class FakeTimer:
    created = []

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


IMMEDIATE = OfflineSyncSettings(reconnect_debounce_sec=0)


@pytest.fixture()
def make_manager(queue, sync_logger):
    managers = []

    def factory(client=None, *, monitor=None, settings=IMMEDIATE, **kwargs):
        manager = OfflineSyncManager(
            client or FakeClient(),
            queue,
            monitor=monitor,
            settings=settings,
            logger=sync_logger,
            **kwargs,
        )
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()


def test_sync_preserves_creation_order_of_offline_actions(make_manager):
    monitor = ConnectivityMonitor(initial_online=False)
    client = FakeClient()
    manager = make_manager(client, monitor=monitor, settings=OfflineSyncSettings(auto_sync=False))
    for tag in ("a", "b", "c", "d"):
        manager.enqueue("mood-entry", {"mood": "Good", "tag": tag})

    assert manager.sync().outcome is SyncOutcome.DEFERRED
    assert client.sent == []

    monitor.set_online(True)
    result = manager.sync()

    assert result.outcome is SyncOutcome.COMPLETED
    assert result.synced == 4
    assert client.tags() == ["a", "b", "c", "d"]


def test_second_sync_after_full_drain_is_noop(make_manager):
    manager = make_manager()
    manager.enqueue("chat-message", {"message": "hello"})

    assert manager.sync().outcome is SyncOutcome.COMPLETED
    second = manager.sync()
    assert second.outcome is SyncOutcome.NOOP
    assert second.ok


def test_empty_queue_is_noop_even_when_offline(make_manager):
    manager = make_manager(monitor=ConnectivityMonitor(initial_online=False))
    assert manager.sync().outcome is SyncOutcome.NOOP


def test_queue_reloaded_after_restart_syncs_to_empty(tmp_path, sync_logger):
    db_path = tmp_path / "offline_queue.db"

    engine = init_db(create_queue_engine(db_path))
    before = OfflineSyncManager(
        FakeClient(),
        PendingActionsQueue(session_factory_for(engine)),
        monitor=ConnectivityMonitor(initial_online=False),
        settings=IMMEDIATE,
        logger=sync_logger,
    )
    action = before.enqueue("progress-update", {"lessonId": 5, "progress": 40})
    before.close()
    engine.dispose()

    engine = init_db(create_queue_engine(db_path))
    client = FakeClient()
    after = OfflineSyncManager(
        client,
        PendingActionsQueue(session_factory_for(engine)),
        settings=IMMEDIATE,
        logger=sync_logger,
    )
    try:
        assert after.get_status().pending_count == 1
        result = after.sync()
        assert result.outcome is SyncOutcome.COMPLETED
        assert [a.id for a in client.sent] == [action.id]
        assert after.get_status().pending_count == 0
        assert after.actions() == []
    finally:
        after.close()
        engine.dispose()


def test_terminal_failure_does_not_block_later_actions(make_manager):
    client = FakeClient({"a": TerminalSyncFailure("HTTP 400: Invalid parameters", status_code=400)})
    manager = make_manager(client)
    rejected = manager.enqueue("progress-update", {"lessonId": 1, "progress": 500, "tag": "a"})
    manager.enqueue("progress-update", {"lessonId": 1, "progress": 60, "tag": "b"})

    result = manager.sync()

    assert client.tags() == ["a", "b"]
    assert result.outcome is SyncOutcome.COMPLETED
    assert result.synced == 1
    assert result.terminal_ids == (rejected.id,)

    failed = manager.failed_actions()
    assert [a.id for a in failed] == [rejected.id]
    assert failed[0].terminal is True
    assert failed[0].attempts == 1
    assert failed[0].last_status_code == 400

    status = manager.get_status()
    assert status.pending_count == 0
    assert status.terminal_count == 1

    # Rejected actions are never retried automatically.
    assert manager.sync().outcome is SyncOutcome.NOOP
    assert client.tags() == ["a", "b"]


def test_concurrent_sync_runs_single_transmission_sequence(make_manager):
    client = BlockingClient()
    manager = make_manager(client)
    manager.enqueue("mood-entry", {"mood": "Okay", "tag": "a"})
    manager.enqueue("mood-entry", {"mood": "Good", "tag": "b"})

    results = []
    worker = threading.Thread(target=lambda: results.append(manager.sync()))
    worker.start()
    assert client.started.wait(5)

    assert manager.get_status().is_syncing is True
    concurrent = manager.sync()
    assert concurrent.outcome is SyncOutcome.ALREADY_IN_PROGRESS

    client.release.set()
    worker.join(5)

    assert results[0].outcome is SyncOutcome.COMPLETED
    assert client.tags() == ["a", "b"]
    assert manager.get_status().is_syncing is False


def test_reconnect_triggers_one_auto_sync(make_manager):
    monitor = ConnectivityMonitor(initial_online=False)
    client = FakeClient()
    manager = make_manager(client, monitor=monitor)
    finished = []
    manager.subscribe(EVENT_SYNC_FINISHED, finished.append)

    for index in range(3):
        manager.enqueue("activity-time", {"duration": 60 * (index + 1), "tag": index})
    assert manager.get_status().pending_count == 3
    assert manager.get_status().is_online is False

    monitor.set_online(True)

    assert len(finished) == 1
    assert finished[0].outcome is SyncOutcome.COMPLETED
    assert len(client.sent) == 3
    status = manager.get_status()
    assert status.pending_count == 0
    assert status.is_online is True
    assert status.has_pending_items is False


def test_server_error_leaves_action_queued_as_transient_failure(make_manager):
    client = FakeClient({"a": TransientSyncFailure("HTTP 500: boom", status_code=500)})
    manager = make_manager(client)
    action = manager.enqueue("mood-entry", {"mood": "Struggling", "tag": "a"})

    result = manager.sync()

    assert result.outcome is SyncOutcome.PARTIAL_FAILURE
    assert result.synced == 0
    assert result.failed_action_id == action.id
    stored = manager.actions()
    assert len(stored) == 1
    assert stored[0].attempts == 1
    assert stored[0].status == STATUS_FAILED
    assert stored[0].terminal is False
    assert manager.get_status().pending_count == 1
    assert manager.get_status().last_error == "HTTP 500: boom"


def test_transient_failure_halts_later_actions(make_manager):
    client = FakeClient({"b": TransientSyncFailure("Network error")})
    manager = make_manager(client)
    for tag in ("a", "b", "c"):
        manager.enqueue("chat-message", {"message": tag, "tag": tag})

    result = manager.sync()

    assert result.outcome is SyncOutcome.PARTIAL_FAILURE
    assert result.synced == 1
    assert client.tags() == ["a", "b"]

    client.failures.clear()
    retried = manager.sync()
    assert retried.outcome is SyncOutcome.COMPLETED
    assert client.tags() == ["a", "b", "b", "c"]


def test_unexpected_client_error_is_isolated_as_transient(make_manager):
    client = FakeClient({"a": RuntimeError("bug in serializer")})
    manager = make_manager(client)
    action = manager.enqueue("mood-entry", {"mood": "Good", "tag": "a"})

    result = manager.sync()

    assert result.outcome is SyncOutcome.PARTIAL_FAILURE
    assert result.failed_action_id == action.id
    assert manager.actions()[0].attempts == 1


def test_losing_connection_mid_sync_defers_remaining_actions(make_manager):
    monitor = ConnectivityMonitor(initial_online=True)

    class DroppingClient(FakeClient):
        def send(self, action):
            result = super().send(action)
            monitor.set_online(False)
            return result

    client = DroppingClient()
    manager = make_manager(client, monitor=monitor)
    manager.enqueue("mood-entry", {"mood": "Good", "tag": "a"})
    manager.enqueue("mood-entry", {"mood": "Okay", "tag": "b"})

    result = manager.sync()

    assert result.outcome is SyncOutcome.DEFERRED
    assert result.synced == 1
    assert client.tags() == ["a"]
    assert manager.get_status().pending_count == 1


def test_flapping_connection_collapses_into_one_sync(make_manager):
    FakeTimer.created = []
    monitor = ConnectivityMonitor(initial_online=False)
    client = FakeClient()
    manager = make_manager(
        client,
        monitor=monitor,
        settings=OfflineSyncSettings(reconnect_debounce_sec=2.0),
        timer_factory=FakeTimer,
    )
    manager.enqueue("lesson-complete", {"lessonId": 7})

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(True)

    assert len(FakeTimer.created) == 3
    assert all(timer.delay == 2.0 and timer.daemon for timer in FakeTimer.created)
    assert [timer.cancelled for timer in FakeTimer.created] == [True, True, False]

    for timer in FakeTimer.created:
        timer.fire()

    assert len(client.sent) == 1
    assert manager.get_status().pending_count == 0


def test_going_offline_cancels_scheduled_auto_sync(make_manager):
    FakeTimer.created = []
    monitor = ConnectivityMonitor(initial_online=False)
    client = FakeClient()
    manager = make_manager(
        client,
        monitor=monitor,
        settings=OfflineSyncSettings(reconnect_debounce_sec=1.0),
        timer_factory=FakeTimer,
    )
    manager.enqueue("mood-entry", {"mood": "Good"})

    monitor.set_online(True)
    monitor.set_online(False)
    FakeTimer.created[0].fire()

    assert client.sent == []


def test_auto_sync_disabled_by_settings(make_manager):
    monitor = ConnectivityMonitor(initial_online=False)
    client = FakeClient()
    manager = make_manager(client, monitor=monitor, settings=OfflineSyncSettings(auto_sync=False))
    manager.enqueue("mood-entry", {"mood": "Good"})

    monitor.set_online(True)

    assert client.sent == []
    assert manager.get_status().pending_count == 1


def test_enqueue_with_unknown_kind_fails(make_manager):
    manager = make_manager()
    with pytest.raises(InvalidActionKind):
        manager.enqueue("video-upload", {"file": "x.mp4"})
    assert manager.get_status().pending_count == 0


def test_status_listeners_receive_snapshots_and_failures_are_isolated(make_manager):
    manager = make_manager()
    seen = []

    def broken(_status):
        raise RuntimeError("listener bug")

    manager.subscribe(EVENT_STATUS_CHANGED, broken)
    manager.subscribe(EVENT_STATUS_CHANGED, seen.append)
    manager.enqueue("mood-entry", {"mood": "Good"})
    manager.sync()

    assert seen[0].pending_count == 1
    assert any(status.is_syncing for status in seen)
    assert seen[-1].pending_count == 0
    assert seen[-1].is_syncing is False
    assert seen[-1].last_synced_at is not None

    manager.unsubscribe(EVENT_STATUS_CHANGED, seen.append)
    manager.enqueue("mood-entry", {"mood": "Okay"})
    assert seen[-1].pending_count == 0

    with pytest.raises(ValueError):
        manager.subscribe("queue_emptied", seen.append)


def test_discard_and_retry_are_left_to_the_caller(make_manager):
    client = FakeClient({"bad": TerminalSyncFailure("HTTP 422", status_code=422)})
    manager = make_manager(client)
    rejected = manager.enqueue("quiz-submit", {"quizId": 3, "score": 90, "tag": "bad"})
    manager.sync()
    assert manager.get_status().terminal_count == 1

    retried = manager.retry(rejected.id)
    assert retried.terminal is False
    assert manager.get_status().pending_count == 1

    client.failures.clear()
    assert manager.sync().synced == 1

    other = manager.enqueue("quiz-submit", {"quizId": 4, "score": 70})
    assert manager.discard(other.id) is True
    assert manager.discard(other.id) is False
    assert manager.retry("missing") is None
    assert manager.get_status().pending_count == 0


def test_interrupted_actions_are_recovered_on_startup(queue, sync_logger):
    action = queue.enqueue("mood-entry", {"mood": "Good"})
    queue.mark_syncing(action.id)

    manager = OfflineSyncManager(FakeClient(), queue, settings=IMMEDIATE, logger=sync_logger)
    try:
        assert manager.actions()[0].status == "pending"
        assert manager.get_status().pending_count == 1
    finally:
        manager.close()


def test_close_releases_connectivity_registration(make_manager):
    monitor = ConnectivityMonitor(initial_online=True)
    manager = make_manager(monitor=monitor)
    assert monitor.listener_count() == 1
    assert manager.monitor is monitor

    manager.close()

    assert monitor.listener_count() == 0
    assert manager.monitor is None


def test_context_manager_detaches(queue, sync_logger):
    monitor = ConnectivityMonitor(initial_online=True)
    with OfflineSyncManager(
        FakeClient(), queue, monitor=monitor, settings=IMMEDIATE, logger=sync_logger
    ) as manager:
        assert manager.is_online is True
        assert monitor.listener_count() == 1
    assert monitor.listener_count() == 0
