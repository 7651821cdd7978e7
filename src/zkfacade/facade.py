"""Factory entry points for ZooKeeper client handles."""

import logging
import threading
from typing import Dict, Optional

from .client import ZKClient
from .config import EnvironmentSetting

logger = logging.getLogger(__name__)

# Settings are cached per environment label; only resolved settings are kept.
_environment_settings: Dict[str, EnvironmentSetting] = {}
_settings_lock = threading.Lock()


def _setting_for(environment: Optional[str]) -> EnvironmentSetting:
    with _settings_lock:
        if environment is None:
            current = EnvironmentSetting()
            label = current.get_environment()
            return _environment_settings.setdefault(label, current)

        label = environment.strip().upper()
        setting = _environment_settings.get(label)
        if setting is None:
            setting = EnvironmentSetting(environment=label)
            _environment_settings[label] = setting
        return setting


def get_client(environment: Optional[str] = None) -> ZKClient:
    """
    Get a handle for an environment.

    Args:
        environment: Environment label; the configured zookeeper.env when None

    Returns:
        A new handle; close it when done

    Raises:
        ConfigurationError: If the environment or its server is not configured
    """
    setting = _setting_for(environment)
    server = setting.get_server()
    client = ZKClient(setting.get_environment(), server, setting.get_auth())
    logger.debug(f"Created ZK client for environment {client.environment}")
    return client


def get_client_for_server(server: str, auth: Optional[str] = None) -> ZKClient:
    """
    Get a handle for an explicit server and credential.

    Args:
        server: ZooKeeper connect string
        auth: Digest credential, None for unauthenticated

    Returns:
        A new handle; close it when done
    """
    return ZKClient("", server, auth)


def clear_environment_cache() -> int:
    """
    Drop all cached environment settings.

    Returns:
        Number of settings dropped
    """
    with _settings_lock:
        count = len(_environment_settings)
        _environment_settings.clear()
        return count
