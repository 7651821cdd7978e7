"""Process-wide registry of shared, reference-counted ZooKeeper sessions."""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from kazoo.client import KazooClient
from kazoo.retry import KazooRetry

from .config import SessionConfig
from .models import ConnectionEvent, ConnectionStateTracker, credential_key

logger = logging.getLogger(__name__)

# Builds an unstarted client for (server, auth, config).
ClientFactory = Callable[[str, Optional[str], SessionConfig], Any]


class ConnectionStateLogger:
    """Session state listener that logs every connection transition."""

    def __init__(self, server: str, client: Any):
        self.server = server
        self._tracker = ConnectionStateTracker(client)

    def __call__(self, state: str) -> None:
        event = self._tracker.classify(state)
        if event is ConnectionEvent.CONNECTED:
            logger.info(f"connected to zookeeper: {self.server}")
        elif event is ConnectionEvent.SUSPENDED:
            logger.warning(f"suspended to zookeeper: {self.server}")
        elif event is ConnectionEvent.RECONNECTED:
            logger.info(f"reconnected to zookeeper: {self.server}")
        elif event is ConnectionEvent.LOST:
            logger.error(f"lose connection to zookeeper: {self.server}")
        elif event is ConnectionEvent.READ_ONLY:
            logger.info(f"read only model to zookeeper: {self.server}")


def new_kazoo_client(server: str, auth: Optional[str], config: SessionConfig) -> KazooClient:
    """
    Build an unstarted kazoo client.

    Args:
        server: ZooKeeper connect string
        auth: Digest credential, None or blank for no authorization
        config: Session settings

    Returns:
        The configured client
    """
    auth_data = None
    if auth is not None and auth.strip():
        auth_data = [(config.auth_scheme, auth)]

    return KazooClient(
        hosts=server,
        timeout=config.session_timeout,
        connection_retry=KazooRetry(**config.connection_retry_options()),
        command_retry=KazooRetry(**config.retry_options()),
        auth_data=auth_data,
    )


@dataclass
class SessionRecord:
    """A live session and the number of handles sharing it."""
    client: Any
    refcount: int = 0


class SessionRegistry:
    """
    Shares one ZooKeeper session per (server, credential) pair.

    acquire() creates the session on first use and counts handles;
    release() closes it when the last handle lets go. Both run under a
    single lock, so concurrent acquires for a new key build one session.
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        config: Optional[SessionConfig] = None,
    ):
        """
        Initialize the registry.

        Args:
            client_factory: Builds unstarted clients (defaults to kazoo)
            config: Session settings
        """
        self.client_factory = client_factory or new_kazoo_client
        self.config = config or SessionConfig()
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def acquire(self, server: str, auth: Optional[str] = None) -> Any:
        """
        Get the shared session for a server and credential, creating it if needed.

        Args:
            server: ZooKeeper connect string
            auth: Digest credential

        Returns:
            The started client
        """
        key = credential_key(server, auth)

        with self._lock:
            record = self._sessions.get(key)
            if record is None:
                client = self._start_client(server, auth)
                record = SessionRecord(client=client)
                self._sessions[key] = record

            record.refcount += 1
            logger.info(f"Server [{server}] auth [****] client count [{record.refcount}] after create")
            return record.client

    def release(self, server: str, auth: Optional[str] = None) -> bool:
        """
        Drop one reference to a session, closing it at zero.

        Args:
            server: ZooKeeper connect string
            auth: Digest credential

        Returns:
            True if the session was closed
        """
        key = credential_key(server, auth)

        with self._lock:
            record = self._sessions.get(key)
            if record is None:
                logger.warning(f"Server [{server}] auth [****] has no session to release")
                return False

            logger.info(f"Server [{server}] auth [****] client count [{record.refcount}] before close")
            record.refcount -= 1
            if record.refcount > 0:
                return False

            del self._sessions[key]
            self._stop_client(server, record.client)
            return True

    def lookup(self, server: str, auth: Optional[str] = None) -> Optional[Any]:
        """Get the session for a server and credential, None if not acquired."""
        key = credential_key(server, auth)
        with self._lock:
            record = self._sessions.get(key)
            return record.client if record else None

    def refcount(self, server: str, auth: Optional[str] = None) -> int:
        """Number of handles sharing the session, 0 if none."""
        key = credential_key(server, auth)
        with self._lock:
            record = self._sessions.get(key)
            return record.refcount if record else 0

    def _start_client(self, server: str, auth: Optional[str]) -> Any:
        client = self.client_factory(server, auth, self.config)
        client.add_listener(ConnectionStateLogger(server, client))
        try:
            client.start(timeout=self.config.connection_timeout)
        except Exception:
            logger.error(f"Failed to connect to zookeeper: {server}")
            self._stop_client(server, client)
            raise
        return client

    def _stop_client(self, server: str, client: Any) -> None:
        try:
            client.stop()
        finally:
            client.close()
        logger.info(f"Closed zookeeper session: {server}")

    def __len__(self) -> int:
        """Return the number of live sessions."""
        with self._lock:
            return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        """Check if a credential key has a live session."""
        with self._lock:
            return key in self._sessions


_registry: Optional[SessionRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> SessionRegistry:
    """Get the process-wide session registry, creating it on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = SessionRegistry()
        return _registry
