"""Error types raised by the remote execution and telemetry core."""
from __future__ import annotations

from typing import Optional


class RemoteError(Exception):
    """Base class for all expected operational errors."""

    #: Stable machine-readable identifier.
    code: str = "unknown"

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        return self.message


class NotConnectedError(RemoteError):
    """No live session; raised before any channel or gate is touched."""

    code = "not_connected"

    def __init__(self, message: str = "Not connected to server", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AuthenticationError(RemoteError):
    """The remote host rejected the credential."""

    code = "authentication_failed"


class KeyFormatError(AuthenticationError):
    """The private key text matches no supported key family or fails to load."""

    code = "key_format"


class UnsupportedPlatformError(RemoteError):
    """The remote host is not running an allowed operating system."""

    code = "unsupported_platform"

    def __init__(self, platform: str, allowed) -> None:
        shown = platform or "unknown"
        super().__init__(
            f"Unsupported platform: {shown}. Supported: {', '.join(sorted(allowed))}"
        )
        self.platform = platform


class TransportError(RemoteError):
    """Network or SSH protocol level failure."""

    code = "transport_failure"


class CommandCancelledError(RemoteError):
    """A streaming command was cancelled by its caller."""

    code = "cancelled"


class ShellError(RemoteError):
    """The interactive shell could not be opened or is already running."""

    code = "shell_error"


class ConfigError(RemoteError):
    """Configuration data failed validation."""

    code = "config_error"
