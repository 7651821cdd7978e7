"""Configuration for ZooKeeper sessions and environment resolution."""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .exceptions import ConfigurationError, ProgrammerError, SerializationError
from .serializers import PROPERTIES_SERIALIZER

logger = logging.getLogger(__name__)

ENVIRONMENT_KEY = "zookeeper.env"
SERVER_KEY_SUFFIX = ".zookeeper.server"
AUTH_KEY_SUFFIX = ".zookeeper.auth"

ZOOKEEPER_PROPERTIES_FILE = "zookeeper.properties"
DEFAULT_ZOOKEEPER_SERVER_FILE = "zookeeper_servers.properties"


@dataclass
class SessionConfig:
    """
    Settings applied to every ZooKeeper session the registry creates.

    Attributes:
        session_timeout_ms: Session timeout negotiated with the server
        connection_timeout_ms: Maximum wait for the initial connection
        retry_base_delay_ms: First delay of the exponential backoff
        retry_max_retries: Maximum number of retries
        retry_backoff: Multiplier applied to the delay after each retry
        reconnect_max_delay_ms: Upper bound on the delay between reconnect attempts
        auth_scheme: Scheme used for credentials
    """
    session_timeout_ms: int = 30000
    connection_timeout_ms: int = 30000
    retry_base_delay_ms: int = 1000
    retry_max_retries: int = 5
    retry_backoff: int = 2
    reconnect_max_delay_ms: int = 60000
    auth_scheme: str = "digest"

    @property
    def session_timeout(self) -> float:
        return self.session_timeout_ms / 1000.0

    @property
    def connection_timeout(self) -> float:
        return self.connection_timeout_ms / 1000.0

    def retry_options(self) -> Dict[str, float]:
        """Keyword arguments for the KazooRetry applied to commands."""
        return {
            "max_tries": self.retry_max_retries,
            "delay": self.retry_base_delay_ms / 1000.0,
            "backoff": self.retry_backoff,
        }

    def connection_retry_options(self) -> Dict[str, float]:
        """
        Keyword arguments for the KazooRetry driving reconnection.

        Reconnects never give up; the delay between attempts is capped
        at reconnect_max_delay_ms.
        """
        return {
            "max_tries": -1,
            "delay": self.retry_base_delay_ms / 1000.0,
            "backoff": self.retry_backoff,
            "max_delay": self.reconnect_max_delay_ms / 1000.0,
        }


def _not_blank(value: Optional[str]) -> bool:
    return value is not None and bool(value.strip())


def load_properties(name: str, search_paths: List[Path]) -> Optional[Dict[str, str]]:
    """
    Load the first properties file with the given name.

    Args:
        name: File name to look for
        search_paths: Directories searched in order

    Returns:
        The file's properties, or None if no readable file was found
    """
    if name is None:
        raise ProgrammerError("Resource cannot be None.")

    for directory in search_paths:
        candidate = Path(directory) / name.lstrip("/")
        if not candidate.is_file():
            continue
        try:
            return PROPERTIES_SERIALIZER.deserialize(candidate.read_bytes())
        except (OSError, SerializationError) as e:
            logger.error(f"load properties from resources failed: {candidate}: {e}")
            return None
    return None


@dataclass
class EnvironmentSetting:
    """
    Resolves the ZooKeeper environment, server and credential.

    Process-wide properties (os.environ) take precedence over the
    zookeeper.properties file; servers also fall back to
    zookeeper_servers.properties. Resolved values are memoized.

    Attributes:
        environment: Environment label, resolved from configuration when None
        search_paths: Directories searched for properties files
        properties: Process-wide properties, os.environ when None
    """
    environment: Optional[str] = None
    search_paths: List[Path] = field(default_factory=lambda: [Path.cwd()])
    properties: Optional[Mapping[str, str]] = None
    _server: Optional[str] = field(default=None, init=False, repr=False)
    _auth: Optional[str] = field(default=None, init=False, repr=False)
    _auth_resolved: bool = field(default=False, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self):
        if _not_blank(self.environment):
            self.environment = self.environment.strip().upper()
        else:
            self.environment = None
        self.search_paths = [Path(p) for p in self.search_paths]

    def _property(self, key: str) -> Optional[str]:
        source = self.properties if self.properties is not None else os.environ
        value = source.get(key)
        return value if _not_blank(value) else None

    def _file_property(self, file_name: str, key: str) -> Optional[str]:
        loaded = load_properties(file_name, self.search_paths)
        if loaded is None:
            return None
        value = loaded.get(key)
        return value if _not_blank(value) else None

    def get_environment(self) -> str:
        """
        Get the environment label, upper-cased.

        Raises:
            ConfigurationError: If no environment is configured
        """
        with self._lock:
            if self.environment is None:
                value = self._property(ENVIRONMENT_KEY) or self._file_property(
                    ZOOKEEPER_PROPERTIES_FILE, ENVIRONMENT_KEY
                )
                if value is not None:
                    self.environment = value.strip().upper()
            if self.environment is None:
                raise ConfigurationError("ZK environment not found.")
            return self.environment

    def get_server(self) -> str:
        """
        Get the connect string for the environment.

        Raises:
            ConfigurationError: If no environment or server is configured
        """
        with self._lock:
            environment = self.get_environment()
            if self._server is None:
                key = environment + SERVER_KEY_SUFFIX
                self._server = (
                    self._property(key)
                    or self._file_property(ZOOKEEPER_PROPERTIES_FILE, key)
                    or self._file_property(DEFAULT_ZOOKEEPER_SERVER_FILE, key)
                )
            if self._server is None:
                raise ConfigurationError(f"ZK servers not found for {environment}")
            return self._server

    def get_auth(self) -> Optional[str]:
        """Get the digest credential for the environment, None if unauthenticated."""
        with self._lock:
            environment = self.get_environment()
            if not self._auth_resolved:
                key = environment + AUTH_KEY_SUFFIX
                self._auth = self._property(key) or self._file_property(
                    ZOOKEEPER_PROPERTIES_FILE, key
                )
                self._auth_resolved = True
            return self._auth
