"""Data models for the zkfacade package."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional
import threading
import time

from kazoo.protocol.states import KazooState, KeeperState, ZnodeStat

from .exceptions import ProgrammerError

if TYPE_CHECKING:
    from .client import ZKClient


DEFAULT_CHARSET = "utf-8"

# Joins server and credential into the session-sharing key.
SERVER_AUTH_SEPARATOR = "-->"


class ActionType(Enum):
    """Kinds of completed facade operations reported to the action monitor."""
    GET_DATA = "GET_DATA"
    DELETE_PATH = "DELETE_PATH"
    GET_CHILD_NAMES = "GET_CHILD_NAMES"
    CREATE_EPHEMERAL = "CREATE_EPHEMERAL"
    CREATE_PERSISTENT = "CREATE_PERSISTENT"
    UPDATE_PERSISTENT = "UPDATE_PERSISTENT"
    SET_DATA = "SET_DATA"
    ADD_NODE_CACHE = "ADD_NODE_CACHE"
    ADD_PATH_CACHE = "ADD_PATH_CACHE"
    ADD_TREE_CACHE = "ADD_TREE_CACHE"
    ADD_CACHE_LISTENER = "ADD_CACHE_LISTENER"
    REMOVE_CACHE_LISTENER = "REMOVE_CACHE_LISTENER"


class CreateMode(Enum):
    """Node creation modes."""
    PERSISTENT = "persistent"
    EPHEMERAL = "ephemeral"
    EPHEMERAL_SEQUENTIAL = "ephemeral_sequential"

    @property
    def ephemeral(self) -> bool:
        return self is not CreateMode.PERSISTENT

    @property
    def sequence(self) -> bool:
        return self is CreateMode.EPHEMERAL_SEQUENTIAL

    @property
    def action_type(self) -> ActionType:
        if self.ephemeral:
            return ActionType.CREATE_EPHEMERAL
        return ActionType.CREATE_PERSISTENT


class ConnectionEvent(Enum):
    """Session connection transitions."""
    CONNECTED = "connected"
    SUSPENDED = "suspended"
    RECONNECTED = "reconnected"
    LOST = "lost"
    READ_ONLY = "read_only"


@dataclass(frozen=True)
class ChildData:
    """
    Cached state of one node.

    Attributes:
        path: Absolute path of the node
        data: Node data, None when not loaded
        stat: ZooKeeper stat of the node
    """
    path: str
    data: Optional[bytes]
    stat: Optional[ZnodeStat] = None


@dataclass(frozen=True)
class ActionRecord:
    """
    A completed facade operation.

    Attributes:
        action_type: The kind of operation
        client: The handle that performed it
        path: Real path the operation targeted
        data: Value or bytes involved in the operation, if any
        timestamp: Unix timestamp when the record was created
    """
    action_type: ActionType
    client: "ZKClient"
    path: str
    data: Any = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        """Convert to dictionary for structured logging."""
        return {
            "action_type": self.action_type.value,
            "server": getattr(self.client, "server", None),
            "environment": getattr(self.client, "environment", None),
            "path": self.path,
            "data": payload_text(self.data),
            "timestamp": self.timestamp,
        }


def real_path(path: str) -> str:
    """
    Normalize a node path into its canonical absolute form.

    Adds the leading slash, drops trailing and repeated slashes. The
    result is stable under repeated application.

    Args:
        path: Absolute or relative node path

    Returns:
        The absolute path sent to ZooKeeper and used as cache key
    """
    if path is None:
        raise ProgrammerError("Path can't be None.")
    return "/" + "/".join(part for part in path.split("/") if part)


def credential_key(server: str, auth: Optional[str] = None) -> str:
    """
    Build the session-sharing key for a server and credential pair.

    Args:
        server: ZooKeeper connect string
        auth: Digest credential, blank for unauthenticated sessions

    Returns:
        The server alone, or server and credential joined by the separator
    """
    if server is None or not server.strip():
        raise ProgrammerError("Server is blank")
    if auth is None or not auth.strip():
        return server
    return f"{server}{SERVER_AUTH_SEPARATOR}{auth}"


def payload_text(data: Any) -> Optional[str]:
    """Render an action payload as text for logs."""
    if data is None:
        return None
    if isinstance(data, str):
        return data
    if isinstance(data, (bytes, bytearray)):
        return bytes(data).decode(DEFAULT_CHARSET, errors="replace")
    return str(data)


class ConnectionStateTracker:
    """
    Turns kazoo session states into connection events.

    kazoo reports CONNECTED for both the first connection and every
    reconnection; the tracker tells them apart by remembering whether
    a connection was seen before.
    """

    def __init__(self, client: Any, connected: bool = False):
        self._client = client
        self._seen_connected = connected
        self._lock = threading.Lock()

    def classify(self, state: str) -> Optional[ConnectionEvent]:
        """
        Map a kazoo state to a connection event.

        Args:
            state: A KazooState value

        Returns:
            The matching event, or None for unknown states
        """
        if state == KazooState.SUSPENDED:
            return ConnectionEvent.SUSPENDED
        if state == KazooState.LOST:
            return ConnectionEvent.LOST
        if state != KazooState.CONNECTED:
            return None

        with self._lock:
            reconnected = self._seen_connected
            self._seen_connected = True

        if getattr(self._client, "client_state", None) == KeeperState.CONNECTED_RO:
            return ConnectionEvent.READ_ONLY
        if reconnected:
            return ConnectionEvent.RECONNECTED
        return ConnectionEvent.CONNECTED
