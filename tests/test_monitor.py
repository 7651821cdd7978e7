"""Tests for monitor module."""

import logging
import threading
import time

from zkfacade.models import ActionType
from zkfacade.monitor import ActionMonitor, LoggerActionListener


class _Handle:
    server = "zk1:2181"
    environment = "DEV"


HANDLE = _Handle()


class TestActionMonitor:
    """Tests for ActionMonitor."""

    def test_default_listener_registered_first(self, monitor):
        assert isinstance(monitor.subscribers[0], LoggerActionListener)
        assert monitor.subscribers[0] is monitor.default_listener

    def test_default_listener_removable(self, monitor):
        assert monitor.remove_subscriber(monitor.default_listener) is True
        assert monitor.subscribers == ()

    def test_none_subscriber_rejected(self, monitor):
        assert monitor.add_subscriber(None) is False
        assert monitor.remove_subscriber(None) is False

    def test_remove_unknown_subscriber(self, monitor):
        assert monitor.remove_subscriber(lambda record: None) is False

    def test_records_delivered_in_order(self, monitor, records):
        for i in range(50):
            assert monitor.trigger_action(ActionType.SET_DATA, HANDLE, f"/node/{i}", b"x")

        assert monitor.flush(timeout=2)
        assert [r.path for r in records] == [f"/node/{i}" for i in range(50)]
        assert all(r.action_type == ActionType.SET_DATA for r in records)
        assert records[0].client is HANDLE

    def test_subscribers_called_in_subscription_order(self, monitor):
        calls = []
        monitor.add_subscriber(lambda record: calls.append("first"))
        monitor.add_subscriber(lambda record: calls.append("second"))

        monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/a")
        monitor.flush(timeout=2)

        assert calls == ["first", "second"]

    def test_failing_subscriber_isolated(self, monitor, records, caplog):
        def broken(record):
            raise RuntimeError("boom")

        monitor.remove_subscriber(records.append)
        monitor.add_subscriber(broken)
        monitor.add_subscriber(records.append)

        monitor.trigger_action(ActionType.DELETE_PATH, HANDLE, "/a")
        monitor.trigger_action(ActionType.DELETE_PATH, HANDLE, "/b")
        monitor.flush(timeout=2)

        assert [r.path for r in records] == ["/a", "/b"]
        assert "boom" in caplog.text

    def test_removed_subscriber_not_called(self, monitor, records):
        monitor.remove_subscriber(records.append)

        monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/a")
        monitor.flush(timeout=2)

        assert records == []

    def test_default_listener_logs(self, monitor, caplog):
        caplog.set_level(logging.INFO, logger="zkfacade.monitor")

        monitor.trigger_action(ActionType.SET_DATA, HANDLE, "/a/b", b"hello")
        monitor.flush(timeout=2)

        assert "type [SET_DATA], server [zk1:2181], path [/a/b], data [hello]" in caplog.text

    def test_full_queue_drops(self):
        monitor = ActionMonitor(max_pending=1, enqueue_timeout=0.01)
        started = threading.Event()
        release = threading.Event()

        def blocking(record):
            started.set()
            release.wait(2)

        monitor.remove_subscriber(monitor.default_listener)
        monitor.add_subscriber(blocking)
        try:
            assert monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/first")
            assert started.wait(2)
            assert monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/second")
            assert monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/third") is False
        finally:
            release.set()
            monitor.shutdown()

    def test_trigger_after_shutdown(self):
        monitor = ActionMonitor()
        monitor.shutdown()

        assert monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/a") is False

    def test_shutdown_dispatches_pending(self):
        monitor = ActionMonitor()
        received = []
        monitor.add_subscriber(received.append)

        monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/a")
        monitor.shutdown()

        assert [r.path for r in received] == ["/a"]

    def test_shutdown_with_full_queue_returns(self, caplog):
        monitor = ActionMonitor(max_pending=1, enqueue_timeout=0.01)
        started = threading.Event()
        release = threading.Event()
        received = []

        def blocking(record):
            started.set()
            release.wait(5)
            received.append(record.path)

        monitor.remove_subscriber(monitor.default_listener)
        monitor.add_subscriber(blocking)
        assert monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/first")
        assert started.wait(2)
        assert monitor.trigger_action(ActionType.GET_DATA, HANDLE, "/second")

        begin = time.monotonic()
        monitor.shutdown(timeout=0.1)
        elapsed = time.monotonic() - begin

        assert elapsed < 2
        assert "Action queue full at shutdown" in caplog.text

        release.set()
        monitor._thread.join(5)

        assert not monitor._thread.is_alive()
        assert received == ["/first", "/second"]

    def test_get_instance_is_shared(self):
        assert ActionMonitor.get_instance() is ActionMonitor.get_instance()

    def test_worker_thread_name(self, monitor):
        names = [t.name for t in threading.enumerate()]
        assert "zookeeper-monitor-subscribe-thread-0" in names
