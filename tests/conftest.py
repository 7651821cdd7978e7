"""Shared fixtures: an in-memory kazoo stand-in and watch recorders."""

import threading
import time
from typing import Dict, List

import pytest
from kazoo.exceptions import (
    BadVersionError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
)
from kazoo.protocol.states import KazooState, KeeperState, ZnodeStat

from zkfacade.monitor import ActionMonitor
from zkfacade.registry import SessionRegistry


def _parent(path: str) -> str:
    parent = path.rsplit("/", 1)[0]
    return parent or "/"


class FakeHandler:
    """Runs spawned work inline."""

    def spawn(self, func, *args, **kwargs):
        func(*args, **kwargs)


class FakeKazooClient:
    """In-memory ZooKeeper tree with the subset of the KazooClient API the facade uses."""

    def __init__(self, hosts: str, auth_data=None):
        self.hosts = hosts
        self.auth_data = auth_data
        self.handler = FakeHandler()
        self.listeners: List = []
        self.connected = False
        self.client_state = KeeperState.CLOSED
        self.started = False
        self.stopped = False
        self.closed = False
        self.fail_start = False
        self._zxid = 1
        self._lock = threading.RLock()
        now = int(time.time() * 1000)
        self._nodes: Dict[str, dict] = {
            "/": {"data": b"", "version": 0, "cversion": 0, "ctime": now, "mtime": now,
                  "czxid": 0, "mzxid": 0, "ephemeral": False},
        }

    # --- lifecycle ---

    def start(self, timeout=15):
        if self.fail_start:
            raise RuntimeError("Connection time-out")
        self.started = True
        self.connected = True
        self.client_state = KeeperState.CONNECTED
        self.set_state(KazooState.CONNECTED)

    def stop(self):
        self.stopped = True
        self.connected = False
        self.client_state = KeeperState.CLOSED

    def close(self):
        self.closed = True

    def add_listener(self, listener):
        self.listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def set_state(self, state):
        for listener in list(self.listeners):
            listener(state)

    def retry(self, func, *args, **kwargs):
        return func(*args, **kwargs)

    # --- tree operations ---

    def _stat(self, path: str) -> ZnodeStat:
        node = self._nodes[path]
        children = self._children(path)
        return ZnodeStat(
            czxid=node["czxid"],
            mzxid=node["mzxid"],
            ctime=node["ctime"],
            mtime=node["mtime"],
            version=node["version"],
            cversion=node["cversion"],
            aversion=0,
            ephemeralOwner=1 if node["ephemeral"] else 0,
            dataLength=len(node["data"]),
            numChildren=len(children),
            pzxid=0,
        )

    def _children(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        return [
            p[len(prefix):] for p in self._nodes
            if p != path and p.startswith(prefix) and "/" not in p[len(prefix):]
        ]

    def exists(self, path, watch=None):
        with self._lock:
            if path not in self._nodes:
                return None
            return self._stat(path)

    def get(self, path, watch=None):
        with self._lock:
            if path not in self._nodes:
                raise NoNodeError()
            return self._nodes[path]["data"], self._stat(path)

    def get_children(self, path, watch=None, include_data=False):
        with self._lock:
            if path not in self._nodes:
                raise NoNodeError()
            return self._children(path)

    def create(self, path, value=b"", acl=None, ephemeral=False, sequence=False, makepath=False):
        with self._lock:
            parent = _parent(path)
            if parent not in self._nodes:
                if not makepath:
                    raise NoNodeError()
                self.ensure_path(parent)
            if sequence:
                counter = self._nodes[parent]["cversion"]
                path = f"{path}{counter:010d}"
            if path in self._nodes:
                raise NodeExistsError()
            self._zxid += 1
            now = int(time.time() * 1000)
            self._nodes[path] = {
                "data": value, "version": 0, "cversion": 0, "ctime": now, "mtime": now,
                "czxid": self._zxid, "mzxid": self._zxid, "ephemeral": ephemeral,
            }
            self._nodes[parent]["cversion"] += 1
            return path

    def ensure_path(self, path, acl=None):
        with self._lock:
            if path in self._nodes:
                return True
            self.ensure_path(_parent(path))
            self.create(path)
            return True

    def set(self, path, value, version=-1):
        with self._lock:
            if path not in self._nodes:
                raise NoNodeError()
            node = self._nodes[path]
            if version != -1 and version != node["version"]:
                raise BadVersionError()
            self._zxid += 1
            node["data"] = value
            node["version"] += 1
            node["mzxid"] = self._zxid
            node["mtime"] = int(time.time() * 1000)
            return self._stat(path)

    def delete(self, path, version=-1, recursive=False):
        if recursive:
            return self._delete_recursive(path)
        with self._lock:
            if path not in self._nodes:
                raise NoNodeError()
            if self._children(path):
                raise NotEmptyError()
            del self._nodes[path]
            self._nodes[_parent(path)]["cversion"] += 1
            return True

    def _delete_recursive(self, path):
        # Same walk as KazooClient._delete_recursive: a missing node counts as deleted.
        try:
            children = self.get_children(path)
        except NoNodeError:
            return True
        for child in children:
            child_path = path + child if path == "/" else path + "/" + child
            self._delete_recursive(child_path)
        try:
            self.delete(path)
        except NoNodeError:
            pass
        return True


class FakeClientFactory:
    """Client factory for SessionRegistry that records every client it builds."""

    def __init__(self):
        self.clients: List[FakeKazooClient] = []
        self.calls: List[tuple] = []
        self.fail_next_start = False

    def __call__(self, server, auth, config):
        auth_data = [(config.auth_scheme, auth)] if auth and auth.strip() else None
        client = FakeKazooClient(server, auth_data=auth_data)
        if self.fail_next_start:
            client.fail_start = True
            self.fail_next_start = False
        self.calls.append((server, auth))
        self.clients.append(client)
        return client


class RecordingDataWatch:
    """Stands in for kazoo's DataWatch; tests fire it by hand."""

    def __init__(self, recorder, client, path, func):
        self.client = client
        self.path = path
        self.func = func
        self.stopped = False
        recorder.data_watches.append(self)
        self.refresh()

    def fire(self, data, stat):
        if self.stopped:
            return
        if self.func(data, stat) is False:
            self.stopped = True

    def refresh(self):
        """Fire with the client's current state of the node."""
        stat = self.client.exists(self.path)
        data = self.client.get(self.path)[0] if stat is not None else None
        self.fire(data, stat)


class RecordingChildrenWatch:
    """Stands in for kazoo's ChildrenWatch; tests fire it by hand."""

    def __init__(self, recorder, client, path, func):
        self.client = client
        self.path = path
        self.func = func
        self.stopped = False
        recorder.children_watches.append(self)
        self.refresh()

    def fire(self, children):
        if self.stopped:
            return
        if self.func(children) is False:
            self.stopped = True

    def refresh(self):
        # kazoo's ChildrenWatch stops for good once its node is gone
        try:
            children = self.client.get_children(self.path)
        except NoNodeError:
            self.stopped = True
            return
        self.fire(children)


class RecordingTreeCache:
    """Stands in for kazoo's TreeCache recipe."""

    def __init__(self, recorder, client, path):
        self.client = client
        self.path = path
        self.listeners = []
        self.fault_listeners = []
        self.started = False
        self.closed = False
        self.data = {}
        self.children = {}
        recorder.tree_caches.append(self)

    def listen(self, listener):
        self.listeners.append(listener)

    def listen_fault(self, listener):
        self.fault_listeners.append(listener)

    def start(self):
        self.started = True

    def close(self):
        self.closed = True

    def get_data(self, path, default=None):
        return self.data.get(path, default)

    def get_children(self, path, default=None):
        return self.children.get(path, default)

    def publish(self, event):
        for listener in list(self.listeners):
            listener(event)


class WatchRecorder:
    def __init__(self):
        self.data_watches: List[RecordingDataWatch] = []
        self.children_watches: List[RecordingChildrenWatch] = []
        self.tree_caches: List[RecordingTreeCache] = []

    def data_watch(self, path):
        """Most recent live data watch on path."""
        for watch in reversed(self.data_watches):
            if watch.path == path and not watch.stopped:
                return watch
        return None


@pytest.fixture
def watch_recorder(monkeypatch):
    """Replace kazoo's watch recipes with recorders."""
    recorder = WatchRecorder()
    monkeypatch.setattr(
        "zkfacade.caches.DataWatch",
        lambda client, path, func: RecordingDataWatch(recorder, client, path, func),
    )
    monkeypatch.setattr(
        "zkfacade.caches.ChildrenWatch",
        lambda client, path, func: RecordingChildrenWatch(recorder, client, path, func),
    )
    monkeypatch.setattr(
        "zkfacade.caches.KazooTreeCache",
        lambda client, path: RecordingTreeCache(recorder, client, path),
    )
    return recorder


@pytest.fixture
def fake_factory():
    return FakeClientFactory()


@pytest.fixture
def registry(fake_factory):
    return SessionRegistry(client_factory=fake_factory)


@pytest.fixture
def monitor():
    monitor = ActionMonitor()
    yield monitor
    monitor.shutdown()


@pytest.fixture
def records(monitor):
    """Action records delivered to a test subscriber."""
    received = []
    monitor.add_subscriber(received.append)
    return received


@pytest.fixture
def fake_client():
    client = FakeKazooClient("zk1:2181")
    client.start()
    return client
