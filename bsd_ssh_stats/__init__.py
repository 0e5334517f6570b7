"""Remote command execution and live telemetry for FreeBSD hosts over SSH."""
from __future__ import annotations

from .client import RemoteClient
from .errors import (
    AuthenticationError,
    CommandCancelledError,
    ConfigError,
    KeyFormatError,
    NotConnectedError,
    RemoteError,
    ShellError,
    TransportError,
    UnsupportedPlatformError,
)
from .session import Credential, Session

__all__ = [
    "AuthenticationError",
    "CommandCancelledError",
    "ConfigError",
    "Credential",
    "KeyFormatError",
    "NotConnectedError",
    "RemoteClient",
    "RemoteError",
    "Session",
    "ShellError",
    "TransportError",
    "UnsupportedPlatformError",
]
