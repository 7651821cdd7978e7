"""
ZooKeeper Facade Package

A thin client-side facade over ZooKeeper built on kazoo.

Features:
- One shared, reference-counted session per (server, credential) pair
- Typed reads and writes with pluggable serializers
- Action monitor reporting every completed operation to subscribers
- Deduplicated node, children and subtree watch caches with listeners
- Environment-based server and credential resolution
"""

from .models import (
    ActionType,
    CreateMode,
    ConnectionEvent,
    ActionRecord,
    ChildData,
    real_path,
    credential_key,
)

from .config import SessionConfig, EnvironmentSetting

from .exceptions import (
    ZKFacadeError,
    SerializationError,
    ConfigurationError,
    ProgrammerError,
    HandleClosedError,
    BadVersionError,
    ConnectionLoss,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    SessionExpiredError,
)

from .serializers import (
    DataSerializer,
    BytesSerializer,
    StringSerializer,
    PropertiesSerializer,
)

from .monitor import ActionMonitor, LoggerActionListener
from .registry import SessionRegistry, ConnectionStateLogger, get_registry
from .caches import (
    NodeCache,
    ChildrenCache,
    SubtreeCache,
    ChildrenCacheEvent,
    ChildrenEventType,
    SubtreeCacheEvent,
    SubtreeEventType,
    ListenerContainer,
)
from .client import ZKClient
from .facade import get_client, get_client_for_server, clear_environment_cache


__all__ = [
    # Models
    "ActionType",
    "CreateMode",
    "ConnectionEvent",
    "ActionRecord",
    "ChildData",
    "real_path",
    "credential_key",
    # Config
    "SessionConfig",
    "EnvironmentSetting",
    # Exceptions
    "ZKFacadeError",
    "SerializationError",
    "ConfigurationError",
    "ProgrammerError",
    "HandleClosedError",
    "BadVersionError",
    "ConnectionLoss",
    "NodeExistsError",
    "NoNodeError",
    "NotEmptyError",
    "SessionExpiredError",
    # Serializers
    "DataSerializer",
    "BytesSerializer",
    "StringSerializer",
    "PropertiesSerializer",
    # Components
    "ActionMonitor",
    "LoggerActionListener",
    "SessionRegistry",
    "ConnectionStateLogger",
    "get_registry",
    "NodeCache",
    "ChildrenCache",
    "SubtreeCache",
    "ChildrenCacheEvent",
    "ChildrenEventType",
    "SubtreeCacheEvent",
    "SubtreeEventType",
    "ListenerContainer",
    # Facade
    "ZKClient",
    "get_client",
    "get_client_for_server",
    "clear_environment_cache",
]

__version__ = "0.1.0"
