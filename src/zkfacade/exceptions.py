"""Custom exceptions for the zkfacade package.

Remote failures are reported with kazoo's own exception types, re-exported
here so callers can catch every error kind from one module.
"""

from kazoo.exceptions import (
    BadVersionError,
    ConnectionLoss,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    SessionExpiredError,
)


class ZKFacadeError(Exception):
    """Base exception for all errors raised by the facade itself."""
    pass


class SerializationError(ZKFacadeError):
    """A serializer could not encode or decode node data."""
    pass


class ConfigurationError(ZKFacadeError):
    """Required ZooKeeper configuration is missing."""
    pass


class ProgrammerError(ZKFacadeError):
    """The facade was called with invalid arguments or in an invalid state."""
    pass


class HandleClosedError(ProgrammerError):
    """The client handle has already been closed."""
    pass


# Connection-level failures: the operation was not delivered.
CONNECTION_LOST_ERRORS = (ConnectionLoss, SessionExpiredError)


__all__ = [
    "ZKFacadeError",
    "SerializationError",
    "ConfigurationError",
    "ProgrammerError",
    "HandleClosedError",
    "CONNECTION_LOST_ERRORS",
    "BadVersionError",
    "ConnectionLoss",
    "NodeExistsError",
    "NoNodeError",
    "NotEmptyError",
    "SessionExpiredError",
]
