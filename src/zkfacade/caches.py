"""Watch caches: durable, listener-friendly subscriptions built on kazoo watches."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Set, Tuple, TypeVar

from kazoo.recipe.cache import TreeCache as KazooTreeCache
from kazoo.recipe.cache import TreeEvent
from kazoo.recipe.watchers import ChildrenWatch, DataWatch

from .models import ChildData, ConnectionEvent, ConnectionStateTracker, real_path

logger = logging.getLogger(__name__)

L = TypeVar("L")
C = TypeVar("C")


class ChildrenEventType(Enum):
    """Events published by a ChildrenCache."""
    CHILD_ADDED = "child_added"
    CHILD_UPDATED = "child_updated"
    CHILD_REMOVED = "child_removed"
    INITIALIZED = "initialized"
    CONNECTION_SUSPENDED = "connection_suspended"
    CONNECTION_RECONNECTED = "connection_reconnected"
    CONNECTION_LOST = "connection_lost"


class SubtreeEventType(Enum):
    """Events published by a SubtreeCache."""
    NODE_ADDED = "node_added"
    NODE_UPDATED = "node_updated"
    NODE_REMOVED = "node_removed"
    INITIALIZED = "initialized"
    CONNECTION_SUSPENDED = "connection_suspended"
    CONNECTION_RECONNECTED = "connection_reconnected"
    CONNECTION_LOST = "connection_lost"


@dataclass(frozen=True)
class ChildrenCacheEvent:
    """A change seen by a ChildrenCache; data is None for non-node events."""
    event_type: ChildrenEventType
    data: Optional[ChildData] = None


@dataclass(frozen=True)
class SubtreeCacheEvent:
    """A change seen by a SubtreeCache; data is None for non-node events."""
    event_type: SubtreeEventType
    data: Optional[ChildData] = None


# Called with no arguments; read NodeCache.current_data for the new state.
NodeCacheListener = Callable[[], None]
ChildrenCacheListener = Callable[[ChildrenCacheEvent], None]
SubtreeCacheListener = Callable[[SubtreeCacheEvent], None]


_CONNECTION_CHILDREN_EVENTS = {
    ConnectionEvent.SUSPENDED: ChildrenEventType.CONNECTION_SUSPENDED,
    ConnectionEvent.RECONNECTED: ChildrenEventType.CONNECTION_RECONNECTED,
    ConnectionEvent.LOST: ChildrenEventType.CONNECTION_LOST,
}

_TREE_EVENT_TYPES = {
    TreeEvent.NODE_ADDED: SubtreeEventType.NODE_ADDED,
    TreeEvent.NODE_UPDATED: SubtreeEventType.NODE_UPDATED,
    TreeEvent.NODE_REMOVED: SubtreeEventType.NODE_REMOVED,
    TreeEvent.INITIALIZED: SubtreeEventType.INITIALIZED,
    TreeEvent.CONNECTION_SUSPENDED: SubtreeEventType.CONNECTION_SUSPENDED,
    TreeEvent.CONNECTION_RECONNECTED: SubtreeEventType.CONNECTION_RECONNECTED,
    TreeEvent.CONNECTION_LOST: SubtreeEventType.CONNECTION_LOST,
}


class ListenerContainer(Generic[L]):
    """
    Thread-safe, ordered set of listeners.

    Dispatch iterates a snapshot, so listeners may be added or removed
    while an event is being delivered. A failing listener is logged and
    does not stop delivery to the others.
    """

    def __init__(self):
        self._listeners: List[L] = []
        self._lock = threading.Lock()

    def add(self, listener: L) -> bool:
        """
        Add a listener.

        Returns:
            True if added, False if it was already registered
        """
        with self._lock:
            if listener in self._listeners:
                return False
            self._listeners.append(listener)
            return True

    def remove(self, listener: L) -> bool:
        """
        Remove a listener.

        Returns:
            True if removed, False if it was not registered
        """
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return False
            return True

    def snapshot(self) -> Tuple[L, ...]:
        with self._lock:
            return tuple(self._listeners)

    def dispatch(self, call: Callable[[L], Any]) -> None:
        """Invoke call(listener) for every listener."""
        for listener in self.snapshot():
            try:
                call(listener)
            except Exception:
                logger.exception(f"Cache listener {listener!r} failed")

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def __contains__(self, listener: Any) -> bool:
        with self._lock:
            return listener in self._listeners


class NodeCache:
    """
    Keeps the data and stat of one node current.

    Listeners are called without arguments whenever the cached state
    changes: the node was created, updated or deleted.
    """

    def __init__(self, client: Any, path: str):
        self.client = client
        self.path = path
        self.listeners: ListenerContainer[NodeCacheListener] = ListenerContainer()
        self._data: Optional[ChildData] = None
        self._lock = threading.Lock()
        self._watch: Optional[DataWatch] = None
        self._closed = False

    @property
    def current_data(self) -> Optional[ChildData]:
        """The node's cached state, None if it does not exist."""
        with self._lock:
            return self._data

    def start(self) -> None:
        self._watch = DataWatch(self.client, self.path, self._on_data)

    def close(self) -> None:
        self._closed = True
        self.listeners.clear()

    def _on_data(self, data, stat, event=None):
        if self._closed:
            return False

        new = ChildData(self.path, data, stat) if stat is not None else None
        with self._lock:
            changed = new != self._data
            self._data = new

        if changed:
            self.listeners.dispatch(lambda listener: listener())
        return None


class ChildrenCache:
    """
    Keeps the direct children of one path, with their data, current.

    The parent path is created if missing. INITIALIZED is published once
    the first listing and its children's data have been loaded. If the
    parent is deleted later it is not re-created; children are watched
    again once someone else re-creates it.
    """

    def __init__(self, client: Any, path: str):
        self.client = client
        self.path = path
        self.listeners: ListenerContainer[ChildrenCacheListener] = ListenerContainer()
        self._children: Dict[str, ChildData] = {}
        # name -> token of the data watch currently owning that child
        self._watched: Dict[str, object] = {}
        self._lock = threading.RLock()
        self._tracker: Optional[ConnectionStateTracker] = None
        self._parent_watch: Optional[DataWatch] = None
        self._parent_exists = False
        self._watch: Optional[ChildrenWatch] = None
        # identifies the children watch allowed to update the cache
        self._children_token: Optional[object] = None
        self._initialized = False
        self._closed = False

    @property
    def current_data(self) -> List[ChildData]:
        """Cached children, sorted by path."""
        with self._lock:
            return sorted(self._children.values(), key=lambda child: child.path)

    def get_current_data(self, name: str) -> Optional[ChildData]:
        """
        Get one cached child.

        Args:
            name: Child name or full child path

        Returns:
            The child's cached state, or None
        """
        prefix = self.path.rstrip("/") + "/"
        normalized = real_path(name)
        if normalized.startswith(prefix):
            name = normalized[len(prefix):]
        else:
            name = name.strip("/")
        with self._lock:
            return self._children.get(name)

    def start(self) -> None:
        self.client.ensure_path(self.path)
        self._tracker = ConnectionStateTracker(self.client, connected=self.client.connected)
        self.client.add_listener(self._on_connection_state)
        # The children watch is armed, and re-armed after the parent is
        # re-created, from the parent's data watch.
        self._parent_watch = DataWatch(self.client, self.path, self._on_parent)

    def close(self) -> None:
        self._closed = True
        self.client.remove_listener(self._on_connection_state)
        self.listeners.clear()

    def _child_path(self, name: str) -> str:
        return real_path(f"{self.path}/{name}")

    def _publish(self, event_type: ChildrenEventType, data: Optional[ChildData] = None) -> None:
        event = ChildrenCacheEvent(event_type, data)
        self.listeners.dispatch(lambda listener: listener(event))

    def _on_parent(self, data, stat, event=None):
        if self._closed:
            return False

        with self._lock:
            existed = self._parent_exists
            self._parent_exists = stat is not None

        if stat is None:
            if existed:
                logger.info(f"Parent {self.path} of children cache deleted, waiting for it to come back")
        elif not existed:
            self._watch_children()
        return None

    def _watch_children(self) -> None:
        token = object()
        with self._lock:
            self._children_token = token

        def watcher(children):
            return self._on_children(token, children)

        self._watch = ChildrenWatch(self.client, self.path, watcher)

    def _on_children(self, token: object, children):
        if self._closed:
            return False

        with self._lock:
            if self._children_token is not token:
                return False
            current = set(children)
            removed = [name for name in self._watched if name not in current]
            added = [name for name in children if name not in self._watched]
            removed_data = []
            for name in removed:
                del self._watched[name]
                if name in self._children:
                    removed_data.append(self._children.pop(name))
            tokens = {}
            for name in added:
                tokens[name] = self._watched[name] = object()

        for data in removed_data:
            self._publish(ChildrenEventType.CHILD_REMOVED, data)

        for name in added:
            self._watch_child(name, tokens[name])

        if not self._initialized:
            self._initialized = True
            self._publish(ChildrenEventType.INITIALIZED)
        return None

    def _watch_child(self, name: str, token: object) -> None:
        def watcher(data, stat, event=None):
            return self._on_child_data(name, token, data, stat)

        DataWatch(self.client, self._child_path(name), watcher)

    def _on_child_data(self, name: str, token: object, data, stat):
        if self._closed:
            return False

        with self._lock:
            if self._watched.get(name) is not token:
                return False

            if stat is None:
                del self._watched[name]
                previous = self._children.pop(name, None)
                if previous is not None:
                    event_type = ChildrenEventType.CHILD_REMOVED
                    new = previous
                else:
                    event_type = None
            else:
                previous = self._children.get(name)
                new = ChildData(self._child_path(name), data, stat)
                self._children[name] = new
                if previous is None:
                    event_type = ChildrenEventType.CHILD_ADDED
                elif previous != new:
                    event_type = ChildrenEventType.CHILD_UPDATED
                else:
                    event_type = None

        if event_type is not None:
            self._publish(event_type, new)
        if stat is None:
            return False
        return None

    def _on_connection_state(self, state) -> None:
        # Runs on kazoo's connection thread, which must not block.
        if self._closed or self._tracker is None:
            return
        event = self._tracker.classify(state)
        event_type = _CONNECTION_CHILDREN_EVENTS.get(event)
        if event_type is not None:
            self.client.handler.spawn(self._publish, event_type)


class SubtreeCache:
    """
    Keeps a node and all of its descendants current.

    Wraps kazoo's TreeCache recipe and republishes its events.
    """

    def __init__(self, client: Any, path: str):
        self.client = client
        self.path = path
        self.listeners: ListenerContainer[SubtreeCacheListener] = ListenerContainer()
        self._tree = KazooTreeCache(client, path)
        self._tree.listen(self._on_tree_event)
        self._tree.listen_fault(self._on_fault)

    def get_current_data(self, path: Optional[str] = None) -> Optional[ChildData]:
        """
        Get the cached state of a node in the subtree.

        Args:
            path: Node path, the cache root when None

        Returns:
            The node's cached state, or None
        """
        node = self._tree.get_data(real_path(path) if path else self.path)
        if node is None:
            return None
        return ChildData(node.path, node.data, node.stat)

    def get_current_children(self, path: Optional[str] = None) -> Optional[Set[str]]:
        """Names of a node's cached children, None if the node is not cached."""
        children = self._tree.get_children(real_path(path) if path else self.path)
        if children is None:
            return None
        return set(children)

    def start(self) -> None:
        self._tree.start()

    def close(self) -> None:
        self._tree.close()
        self.listeners.clear()

    def _on_tree_event(self, event) -> None:
        event_type = _TREE_EVENT_TYPES.get(event.event_type)
        if event_type is None:
            return
        node = event.event_data
        data = ChildData(node.path, node.data, node.stat) if node is not None else None
        published = SubtreeCacheEvent(event_type, data)
        self.listeners.dispatch(lambda listener: listener(published))

    def _on_fault(self, error: Exception) -> None:
        logger.error(f"Tree cache on {self.path} failed: {error}")


class CacheTable(Generic[C]):
    """
    Per-handle table holding at most one started cache per path.

    Each table has its own lock covering lookup, construction, start
    and installation.
    """

    def __init__(self, factory: Callable[[str], C]):
        """
        Initialize the table.

        Args:
            factory: Builds an unstarted cache for a real path
        """
        self._factory = factory
        self._caches: Dict[str, C] = {}
        self._lock = threading.Lock()

    def get_or_create(self, path: str) -> Tuple[C, bool]:
        """
        Get the cache for a real path, building and starting it if needed.

        Returns:
            (cache, created)
        """
        with self._lock:
            cache = self._caches.get(path)
            if cache is not None:
                return cache, False

            cache = self._factory(path)
            try:
                cache.start()
            except Exception:
                cache.close()
                raise
            self._caches[path] = cache
            return cache, True

    def snapshot(self) -> Dict[str, C]:
        with self._lock:
            return dict(self._caches)

    def close_all(self) -> int:
        """
        Close and drop every cache.

        Returns:
            Number of caches closed
        """
        with self._lock:
            caches = list(self._caches.items())
            self._caches.clear()

        for path, cache in caches:
            try:
                cache.close()
            except Exception:
                logger.exception(f"Failed to close cache on {path}")
        return len(caches)

    def __len__(self) -> int:
        with self._lock:
            return len(self._caches)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._caches
