"""User-facing ZooKeeper client handle."""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from kazoo.exceptions import NodeExistsError, NoNodeError, NotEmptyError
from kazoo.protocol.states import ZnodeStat

from .caches import (
    CacheTable,
    ChildrenCache,
    ChildrenCacheListener,
    NodeCache,
    NodeCacheListener,
    SubtreeCache,
    SubtreeCacheListener,
)
from .exceptions import HandleClosedError, ProgrammerError
from .models import ActionType, CreateMode, real_path
from .monitor import ActionMonitor
from .registry import SessionRegistry, get_registry
from .serializers import DataSerializer

logger = logging.getLogger(__name__)


def _require_path(path: Optional[str], what: str) -> str:
    if path is None or not path.strip():
        raise ProgrammerError(f"{what} path can't be blank.")
    return real_path(path)


def _require_listener(listener: Any, what: str) -> None:
    if listener is None:
        raise ProgrammerError(f"{what} listener can't be None.")


class ZKClient:
    """
    Handle bound to one environment and one (server, credential) pair.

    Handles sharing a server and credential share one ZooKeeper session
    through the session registry. Every completed operation is reported
    to the action monitor. Watch caches are kept per handle, one per
    flavor and path, until the handle is closed.

    A handle must be closed exactly once; closing it again raises
    HandleClosedError.
    """

    def __init__(
        self,
        environment: str,
        server: str,
        auth: Optional[str] = None,
        registry: Optional[SessionRegistry] = None,
        monitor: Optional[ActionMonitor] = None,
    ):
        """
        Initialize the handle and acquire its shared session.

        Args:
            environment: Environment label, informational only
            server: ZooKeeper connect string
            auth: Digest credential
            registry: Session registry (defaults to the process-wide one)
            monitor: Action monitor (defaults to the process-wide one)
        """
        self._registry = registry if registry is not None else get_registry()
        self._monitor = monitor if monitor is not None else ActionMonitor.get_instance()
        self._registry.acquire(server, auth)

        self.environment = environment
        self.server = server
        self._auth = auth
        self._closed = False
        self._close_lock = threading.Lock()

        self._node_caches: CacheTable[NodeCache] = CacheTable(
            lambda path: NodeCache(self.framework, path)
        )
        self._children_caches: CacheTable[ChildrenCache] = CacheTable(
            lambda path: ChildrenCache(self.framework, path)
        )
        self._tree_caches: CacheTable[SubtreeCache] = CacheTable(
            lambda path: SubtreeCache(self.framework, path)
        )

    def __repr__(self) -> str:
        return f"ZKClient(environment={self.environment!r}, server={self.server!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def framework(self) -> Any:
        """The shared kazoo client behind this handle."""
        if self._closed:
            raise HandleClosedError("ZK client is closed.")
        client = self._registry.lookup(self.server, self._auth)
        if client is None:
            raise HandleClosedError(f"No session for server [{self.server}].")
        return client

    @property
    def node_cache_map(self) -> Dict[str, NodeCache]:
        return self._node_caches.snapshot()

    @property
    def children_cache_map(self) -> Dict[str, ChildrenCache]:
        return self._children_caches.snapshot()

    @property
    def tree_cache_map(self) -> Dict[str, SubtreeCache]:
        return self._tree_caches.snapshot()

    def close(self) -> None:
        """
        Close every watch cache, then release the shared session.

        Raises:
            HandleClosedError: If the handle was already closed
        """
        with self._close_lock:
            if self._closed:
                raise HandleClosedError("ZK client is already closed.")
            self._closed = True

        try:
            self._node_caches.close_all()
            self._children_caches.close_all()
            self._tree_caches.close_all()
        finally:
            self._registry.release(self.server, self._auth)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @staticmethod
    def get_real_path(path: str) -> str:
        """Get the real ZooKeeper node path."""
        return real_path(path)

    def _trigger(self, action_type: ActionType, path: str, data: Any = None) -> None:
        self._monitor.trigger_action(action_type, self, path, data)

    # --- Existence and reads ---

    def exists(self, path: str) -> bool:
        """Check whether the node at path exists."""
        return self.stat(path) is not None

    def stat(self, path: str) -> Optional[ZnodeStat]:
        """Get the stat of the node at path, None if it does not exist."""
        realpath = real_path(path)
        zk = self.framework
        return zk.retry(zk.exists, realpath)

    def get_bytes(self, path: str) -> bytes:
        """
        Get the data of the node at path.

        Raises:
            NoNodeError: If the node does not exist
        """
        return self.get_bytes_and_stat(path)[0]

    def get_bytes_and_stat(self, path: str) -> Tuple[bytes, ZnodeStat]:
        """
        Get the data and stat of the node at path from a single read.

        Raises:
            NoNodeError: If the node does not exist
        """
        realpath = real_path(path)
        zk = self.framework
        data, stat = zk.retry(zk.get, realpath)
        self._trigger(ActionType.GET_DATA, realpath, data)
        return data, stat

    def get(self, path: str, serializer: DataSerializer) -> Any:
        """Get the data of the node at path, decoded by serializer."""
        return self.get_and_stat(path, serializer)[0]

    def get_and_stat(self, path: str, serializer: DataSerializer) -> Tuple[Any, ZnodeStat]:
        """Get the decoded data and stat of the node at path from a single read."""
        if serializer is None:
            raise ProgrammerError("Serializer can't be None.")

        realpath = real_path(path)
        zk = self.framework
        data, stat = zk.retry(zk.get, realpath)
        value = serializer.deserialize(data) if data is not None else None
        self._trigger(ActionType.GET_DATA, realpath, value)
        return value, stat

    def get_children(self, path: str) -> List[str]:
        """Get the names of the direct children of path, in server order."""
        realpath = real_path(path)
        zk = self.framework
        names = zk.retry(zk.get_children, realpath)
        self._trigger(ActionType.GET_CHILD_NAMES, realpath, names)
        return names

    # --- Writes ---

    @staticmethod
    def _encode(data: Any, serializer: Optional[DataSerializer], required: bool = False) -> Optional[bytes]:
        if serializer is not None:
            if data is None:
                raise ProgrammerError("Data can't be None.")
            return serializer.serialize(data)
        if data is None:
            if required:
                raise ProgrammerError("Data can't be None.")
            return None
        if not isinstance(data, (bytes, bytearray)):
            raise ProgrammerError(
                f"Data must be bytes without a serializer, got {type(data).__name__}"
            )
        return bytes(data)

    def create(
        self,
        path: str,
        mode: CreateMode = CreateMode.PERSISTENT,
        data: Any = None,
        serializer: Optional[DataSerializer] = None,
    ) -> str:
        """
        Create a node, creating missing parents.

        Args:
            path: Node path
            mode: Creation mode
            data: Node data, bytes unless a serializer is given
            serializer: Encodes data

        Returns:
            The created path; for sequential modes, the assigned name
        """
        if not isinstance(mode, CreateMode):
            raise ProgrammerError(f"Unknown create mode: {mode!r}")

        realpath = real_path(path)
        node_data = self._encode(data, serializer)
        created = self.framework.create(
            realpath,
            value=node_data if node_data is not None else b"",
            ephemeral=mode.ephemeral,
            sequence=mode.sequence,
            makepath=True,
        )
        self._trigger(mode.action_type, created, node_data)
        return created

    def create_ephemeral(self, path: str, data: Any = None, serializer: Optional[DataSerializer] = None) -> str:
        """Create an ephemeral node."""
        return self.create(path, CreateMode.EPHEMERAL, data, serializer)

    def create_ephemeral_sequential(
        self, path: str, data: Any = None, serializer: Optional[DataSerializer] = None
    ) -> str:
        """Create an ephemeral sequential node and return its assigned path."""
        return self.create(path, CreateMode.EPHEMERAL_SEQUENTIAL, data, serializer)

    def create_persistent(self, path: str, data: Any = None, serializer: Optional[DataSerializer] = None) -> str:
        """Create a persistent node."""
        return self.create(path, CreateMode.PERSISTENT, data, serializer)

    def create_or_set(self, path: str, data: Any, serializer: Optional[DataSerializer] = None) -> None:
        """
        Create a persistent node with parents, or replace its data if it exists.
        """
        realpath = real_path(path)
        node_data = self._encode(data, serializer, required=True)
        zk = self.framework

        while True:
            try:
                zk.create(realpath, value=node_data, makepath=True)
                break
            except NodeExistsError:
                pass
            try:
                zk.set(realpath, node_data)
                break
            except NoNodeError:
                # Deleted between create and set.
                logger.debug(f"Node {realpath} vanished during create_or_set, retrying")

        self._trigger(ActionType.UPDATE_PERSISTENT, realpath, node_data)

    def set_data(
        self,
        path: str,
        data: Any,
        serializer: Optional[DataSerializer] = None,
        expected_version: int = -1,
    ) -> ZnodeStat:
        """
        Replace the data of an existing node.

        Args:
            path: Node path
            data: New data, bytes unless a serializer is given
            serializer: Encodes data
            expected_version: Required current version, -1 for any

        Returns:
            The node's new stat

        Raises:
            BadVersionError: If the node's version differs from expected_version
        """
        realpath = real_path(path)
        node_data = self._encode(data, serializer, required=True)
        stat = self.framework.set(realpath, node_data, version=expected_version)
        self._trigger(ActionType.SET_DATA, realpath, node_data)
        return stat

    def delete(self, path: str, recursive: bool = False) -> None:
        """
        Delete a node.

        Raises:
            NoNodeError: If the node does not exist
            NotEmptyError: If the node has children and recursive is False
        """
        realpath = real_path(path)
        zk = self.framework
        try:
            zk.delete(realpath)
        except NotEmptyError:
            if not recursive:
                raise
            # kazoo treats a missing node as deleted when recursive
            zk.delete(realpath, recursive=True)
        self._trigger(ActionType.DELETE_PATH, realpath)

    # --- Node caches ---

    def get_node_cache(self, path: str) -> NodeCache:
        """Get the node cache for path, starting one if needed."""
        return self._node_cache(real_path(path))

    def _node_cache(self, realpath: str) -> NodeCache:
        if self._closed:
            raise HandleClosedError("ZK client is closed.")
        cache, created = self._node_caches.get_or_create(realpath)
        if created:
            self._trigger(ActionType.ADD_NODE_CACHE, realpath)
        return cache

    def add_node_cache_listener(self, path: str, listener: NodeCacheListener) -> NodeCache:
        realpath = _require_path(path, "Node cache")
        _require_listener(listener, "Node cache")

        cache = self._node_cache(realpath)
        cache.listeners.add(listener)
        self._trigger(ActionType.ADD_CACHE_LISTENER, realpath)
        return cache

    def remove_node_cache_listener(self, path: str, listener: NodeCacheListener) -> NodeCache:
        realpath = _require_path(path, "Node cache")
        _require_listener(listener, "Node cache")

        cache = self._node_cache(realpath)
        cache.listeners.remove(listener)
        self._trigger(ActionType.REMOVE_CACHE_LISTENER, realpath)
        return cache

    # --- Children caches ---

    def get_children_cache(self, path: str) -> ChildrenCache:
        """Get the children cache for path, starting one if needed."""
        return self._children_cache(real_path(path))

    def _children_cache(self, realpath: str) -> ChildrenCache:
        if self._closed:
            raise HandleClosedError("ZK client is closed.")
        cache, created = self._children_caches.get_or_create(realpath)
        if created:
            self._trigger(ActionType.ADD_PATH_CACHE, realpath)
        return cache

    def add_children_cache_listener(self, path: str, listener: ChildrenCacheListener) -> ChildrenCache:
        realpath = _require_path(path, "Path child cache")
        _require_listener(listener, "Path children cache")

        cache = self._children_cache(realpath)
        cache.listeners.add(listener)
        self._trigger(ActionType.ADD_CACHE_LISTENER, realpath)
        return cache

    def remove_children_cache_listener(self, path: str, listener: ChildrenCacheListener) -> ChildrenCache:
        realpath = _require_path(path, "Path child cache")
        _require_listener(listener, "Path children cache")

        cache = self._children_cache(realpath)
        cache.listeners.remove(listener)
        self._trigger(ActionType.REMOVE_CACHE_LISTENER, realpath)
        return cache

    # --- Tree caches ---

    def get_tree_cache(self, path: str) -> SubtreeCache:
        """Get the subtree cache for path, starting one if needed."""
        return self._tree_cache(real_path(path))

    def _tree_cache(self, realpath: str) -> SubtreeCache:
        if self._closed:
            raise HandleClosedError("ZK client is closed.")
        cache, created = self._tree_caches.get_or_create(realpath)
        if created:
            self._trigger(ActionType.ADD_TREE_CACHE, realpath)
        return cache

    def add_tree_cache_listener(self, path: str, listener: SubtreeCacheListener) -> SubtreeCache:
        realpath = _require_path(path, "Tree cache")
        _require_listener(listener, "Tree cache")

        cache = self._tree_cache(realpath)
        cache.listeners.add(listener)
        self._trigger(ActionType.ADD_CACHE_LISTENER, realpath)
        return cache

    def remove_tree_cache_listener(self, path: str, listener: SubtreeCacheListener) -> SubtreeCache:
        realpath = _require_path(path, "Tree cache")
        _require_listener(listener, "Tree cache")

        cache = self._tree_cache(realpath)
        cache.listeners.remove(listener)
        self._trigger(ActionType.REMOVE_CACHE_LISTENER, realpath)
        return cache
