"""Transport session: one authenticated SSH connection to one remote host."""
from __future__ import annotations

import asyncio
import errno
import functools
import logging
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, FrozenSet, Optional, Tuple

import paramiko
from paramiko.ssh_exception import NoValidConnectionsError

from .errors import (
    AuthenticationError,
    KeyFormatError,
    NotConnectedError,
    TransportError,
    UnsupportedPlatformError,
)
from .keys import load_private_key
from .util import run_blocking

_LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 22
CONNECT_TIMEOUT = 10
ALLOWED_PLATFORMS: FrozenSet[str] = frozenset({"FreeBSD"})
PLATFORM_COMMAND = "uname -s"

READ_BUFFER = 32768
FRAME_POLL_INTERVAL = 0.2

STDOUT = "stdout"
STDERR = "stderr"

# Transport exceptions raised by paramiko and the socket layer.
TRANSPORT_EXCEPTIONS = (paramiko.SSHException, OSError, EOFError)

_ERRNO_MESSAGES = {
    errno.EINTR: "Interrupted system call. This might be a library issue.",
    errno.ECONNRESET: "Connection reset by server. Check credentials and SSH server logs.",
    errno.ETIMEDOUT: "Connection timed out. Check firewall settings.",
    errno.ECONNREFUSED: "Connection refused. Check if SSH server is running on port {port}.",
    errno.EHOSTDOWN: "Host is down or unreachable.",
    errno.EHOSTUNREACH: "No route to host. Check network connectivity.",
}


@dataclass(frozen=True)
class Credential:
    """Username plus private key text used for key based authentication."""

    username: str
    key_text: str = field(repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)
    key_path: Optional[str] = None

    @classmethod
    def from_file(
        cls, username: str, path: str, passphrase: Optional[str] = None
    ) -> "Credential":
        """Read the private key stored at *path*."""
        key_file = Path(path).expanduser()
        try:
            text = key_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as err:
            raise KeyFormatError(f"Cannot read private key {key_file}: {err}") from err
        return cls(username=username, key_text=text, passphrase=passphrase, key_path=str(key_file))


def _errno_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, NoValidConnectionsError):
        for inner in exc.errors.values():
            if getattr(inner, "errno", None):
                return inner.errno
        return None
    return getattr(exc, "errno", None)


def describe_transport_error(exc: BaseException, port: int = DEFAULT_PORT) -> str:
    """Return a human readable description of a connection failure."""
    try:
        prefix = "Connection failed: "
        if isinstance(exc, paramiko.AuthenticationException):
            return (
                prefix
                + "Authentication failed. Please check:\n"
                + "• The username is correct\n"
                + "• The public key is installed in authorized_keys\n"
                + "• The user account is not locked"
            )
        if isinstance(exc, (socket.timeout, TimeoutError)):
            return prefix + _ERRNO_MESSAGES[errno.ETIMEDOUT]
        code = _errno_of(exc)
        if code in _ERRNO_MESSAGES:
            return prefix + _ERRNO_MESSAGES[code].format(port=port)
        if isinstance(exc, OSError) and code is not None:
            return prefix + f"Network error (POSIX code {code})"
        if isinstance(exc, EOFError) or "Connection reset by peer" in str(exc):
            return prefix + "Server closed connection."
        if isinstance(exc, paramiko.SSHException):
            return prefix + f"SSH protocol error: {exc}"
        return prefix + (str(exc) or type(exc).__name__)
    except Exception:  # pragma: no cover - classification is best effort
        return "Connection failed"


def read_all(channel: paramiko.Channel, bufsize: int = READ_BUFFER) -> bytes:
    """Read *channel* until EOF and return the collected bytes."""
    chunks = []
    while True:
        data = channel.recv(bufsize)
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def read_frame(
    channel: paramiko.Channel, bufsize: int = READ_BUFFER
) -> Optional[Tuple[str, bytes]]:
    """Read one frame from *channel*.

    Returns ``(stream, data)`` where *data* is empty at EOF, or ``None`` when
    the channel timeout expired without data.
    """
    if channel.recv_stderr_ready():
        return STDERR, channel.recv_stderr(bufsize)
    try:
        return STDOUT, channel.recv(bufsize)
    except socket.timeout:
        return None


class Session:
    """A single authenticated connection to one remote host.

    Every window or context owns its own instance. A disconnected session
    can still be referenced but every operation on it fails fast with
    :class:`NotConnectedError`.
    """

    def __init__(
        self,
        *,
        allowed_platforms: FrozenSet[str] = ALLOWED_PLATFORMS,
        connect_timeout: float = CONNECT_TIMEOUT,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self.connected = False
        self.host = ""
        self.port = DEFAULT_PORT
        self.username = ""
        self.key_path: Optional[str] = None
        self.platform = ""
        self.last_error: Optional[str] = None
        self._allowed_platforms = frozenset(allowed_platforms)
        self._connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None

    async def connect(self, host: str, port: int, credential: Credential) -> None:
        """Authenticate against *host* and check the remote platform."""
        if self._client is not None:
            await self.disconnect()

        _LOGGER.info("Connecting to %s@%s:%s", credential.username, host, port)
        try:
            pkey = load_private_key(credential.key_text, credential.passphrase)
        except KeyFormatError as err:
            self.last_error = str(err)
            raise

        client = self._client_factory()
        try:
            platform = await self._open(client, host, port, credential.username, pkey)
        except BaseException as err:
            if isinstance(err, asyncio.CancelledError):
                message = f"Connection to {host} cancelled"
            else:
                message = str(err) or type(err).__name__
            await self._abandon(client, message)
            raise

        self._client = client
        self.connected = True
        self.host = host
        self.port = port
        self.username = credential.username
        self.key_path = credential.key_path
        self.platform = platform
        self.last_error = None
        _LOGGER.info("Connected to %s (%s)", host, platform)

    async def _open(
        self, client: paramiko.SSHClient, host: str, port: int, username: str, pkey: paramiko.PKey
    ) -> str:
        """Authenticate *client* and return the verified remote platform."""
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        dial = functools.partial(
            client.connect,
            hostname=host,
            port=port,
            username=username,
            pkey=pkey,
            timeout=self._connect_timeout,
            banner_timeout=self._connect_timeout,
            auth_timeout=self._connect_timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        try:
            await run_blocking(dial)
        except paramiko.AuthenticationException as err:
            raise AuthenticationError(describe_transport_error(err, port)) from err
        except TRANSPORT_EXCEPTIONS as err:
            raise TransportError(describe_transport_error(err, port)) from err

        try:
            platform = await run_blocking(self._identify, client)
        except TRANSPORT_EXCEPTIONS as err:
            raise TransportError(describe_transport_error(err, port)) from err

        if platform not in self._allowed_platforms:
            raise UnsupportedPlatformError(platform, self._allowed_platforms)
        return platform

    async def disconnect(self) -> None:
        """Close the connection. Safe to call any number of times."""
        client, self._client = self._client, None
        was_connected = self.connected
        self.connected = False
        self.host = ""
        self.platform = ""
        if client is None:
            return
        try:
            await asyncio.to_thread(client.close)
        except Exception as err:  # pragma: no cover - close is best effort
            _LOGGER.debug("Ignoring error while closing connection: %s", err)
        if was_connected:
            _LOGGER.info("Disconnected")

    def require_connected(self) -> None:
        """Raise :class:`NotConnectedError` unless a live connection exists."""
        if not self.connected or self._client is None:
            raise NotConnectedError()

    def open_channel(self) -> paramiko.Channel:
        """Open a new session channel. Blocking; run it in a worker thread."""
        self.require_connected()
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            message = f"Connection to {self.host} was lost"
            self._mark_lost(message)
            raise TransportError(message)
        try:
            return transport.open_session()
        except TRANSPORT_EXCEPTIONS as err:
            message = describe_transport_error(err, self.port)
            self.last_error = message
            raise TransportError(message) from err

    def open_shell_channel(self, term: str, width: int, height: int) -> paramiko.Channel:
        """Open a channel with a negotiated PTY running the login shell."""
        channel = self.open_channel()
        try:
            channel.get_pty(term=term, width=width, height=height)
            channel.invoke_shell()
        except TRANSPORT_EXCEPTIONS as err:
            channel.close()
            message = describe_transport_error(err, self.port)
            self.last_error = message
            raise TransportError(message) from err
        return channel

    def _identify(self, client: paramiko.SSHClient) -> str:
        channel = client.get_transport().open_session()
        try:
            channel.set_combine_stderr(True)
            channel.exec_command(PLATFORM_COMMAND)
            output = read_all(channel).decode("utf-8", "replace")
        finally:
            channel.close()
        return output.strip()

    def _mark_lost(self, message: str) -> None:
        _LOGGER.warning(message)
        client, self._client = self._client, None
        self.connected = False
        self.last_error = message
        if client is not None:
            try:
                client.close()
            except Exception:  # pragma: no cover - close is best effort
                pass

    async def _abandon(self, client: paramiko.SSHClient, message: str) -> None:
        """Tear down a partially opened *client* and record *message*."""
        _LOGGER.error(message)
        self.connected = False
        self.last_error = message
        try:
            await run_blocking(client.close)
        except Exception as err:  # pragma: no cover - close is best effort
            _LOGGER.debug("Ignoring error while closing connection: %s", err)
