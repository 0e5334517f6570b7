from __future__ import annotations

import io
import socket
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

import paramiko
import pytest

from bsd_ssh_stats.session import Credential


class FakeChannel:
    """Minimal stand-in for :class:`paramiko.Channel`."""

    def __init__(self, transport: "FakeTransport") -> None:
        self.transport = transport
        self.stdout = deque()
        self.stderr = deque()
        self.exit_status = 0
        self.commands: List[str] = []
        self.sent: List[bytes] = []
        self.resizes: List[tuple] = []
        self.pty: Optional[tuple] = None
        self.shell = False
        self.combine = False
        self.timeout: Optional[float] = None
        self.hold_open = False
        self.closed = False

    # --- test helpers ---
    def push(self, data: bytes) -> None:
        self.stdout.append(data)

    def push_stderr(self, data: bytes) -> None:
        self.stderr.append(data)

    def finish(self) -> None:
        self.hold_open = False

    # --- paramiko API ---
    def settimeout(self, timeout: float) -> None:
        self.timeout = timeout

    def set_combine_stderr(self, flag: bool) -> None:
        self.combine = flag

    def exec_command(self, command: str) -> None:
        self.commands.append(command)
        self.transport.executed.append(command)
        response = self.transport.respond(command)
        for frame in response.get("frames", []):
            self.stdout.append(frame)
        for frame in response.get("stderr_frames", []):
            self.stderr.append(frame)
        self.exit_status = response.get("status", 0)
        self.hold_open = response.get("hold_open", False)

    def get_pty(self, term: str = "vt100", width: int = 80, height: int = 24, **_: Any) -> None:
        self.pty = (term, width, height)

    def invoke_shell(self) -> None:
        self.shell = True
        self.hold_open = True
        for frame in self.transport.shell_output:
            self.stdout.append(frame)

    def recv_ready(self) -> bool:
        return bool(self.stdout) or (self.combine and bool(self.stderr))

    def recv(self, nbytes: int) -> bytes:
        if self.stdout:
            return self.stdout.popleft()
        if self.combine and self.stderr:
            return self.stderr.popleft()
        if self.hold_open and not self.closed:
            time.sleep(self.timeout or 0.005)
            raise socket.timeout()
        return b""

    def recv_stderr_ready(self) -> bool:
        return not self.combine and bool(self.stderr)

    def recv_stderr(self, nbytes: int) -> bytes:
        return self.stderr.popleft() if self.stderr else b""

    def exit_status_ready(self) -> bool:
        return not self.hold_open and not self.stdout and not self.stderr

    def recv_exit_status(self) -> int:
        return self.exit_status

    def sendall(self, data: bytes) -> None:
        if self.transport.send_hook is not None:
            self.transport.send_hook(data)
        self.sent.append(data)
        if self.transport.echo:
            self.stdout.append(data)

    def resize_pty(self, width: int = 80, height: int = 24, **_: Any) -> None:
        self.resizes.append((width, height))

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Scripted transport: command text -> response dict."""

    def __init__(self) -> None:
        self.active = True
        self.responses: Dict[str, Any] = {"uname -s": "FreeBSD\n"}
        self.executed: List[str] = []
        self.channels: List[FakeChannel] = []
        self.shell_output: List[bytes] = []
        self.echo = False
        self.send_hook: Optional[Callable[[bytes], None]] = None
        self.open_session_error: Optional[BaseException] = None

    def respond(self, command: str) -> Dict[str, Any]:
        response = self.responses.get(command, "")
        if callable(response):
            response = response(command)
        if isinstance(response, str):
            response = response.encode()
        if isinstance(response, bytes):
            return {"frames": [response] if response else []}
        return response

    def is_active(self) -> bool:
        return self.active

    def open_session(self) -> FakeChannel:
        if self.open_session_error is not None:
            raise self.open_session_error
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel


class FakeSSHClient:
    def __init__(self, transport: FakeTransport, connect_error: Optional[BaseException] = None) -> None:
        self.transport = transport
        self.connect_error = connect_error
        self.connect_kwargs: Dict[str, Any] = {}
        self.closed = False

    def set_missing_host_key_policy(self, policy: Any) -> None:
        self.policy = policy

    def connect(self, **kwargs: Any) -> None:
        self.connect_kwargs = kwargs
        if self.connect_error is not None:
            raise self.connect_error
        self.transport.active = True

    def get_transport(self) -> FakeTransport:
        return self.transport

    def close(self) -> None:
        self.closed = True
        self.transport.active = False


class FakeHost:
    """Factory handed to :class:`Session` as ``client_factory``."""

    def __init__(self) -> None:
        self.transport = FakeTransport()
        self.clients: List[FakeSSHClient] = []
        self.connect_error: Optional[BaseException] = None
        self._lock = threading.Lock()

    def __call__(self) -> FakeSSHClient:
        with self._lock:
            client = FakeSSHClient(self.transport, self.connect_error)
            self.clients.append(client)
            return client


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture(scope="session")
def rsa_key_text() -> str:
    buf = io.StringIO()
    paramiko.RSAKey.generate(1024).write_private_key(buf)
    return buf.getvalue()


@pytest.fixture
def credential(rsa_key_text: str) -> Credential:
    return Credential(username="root", key_text=rsa_key_text)


class FakeSession:
    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.port = 22

    def require_connected(self) -> None:
        from bsd_ssh_stats.errors import NotConnectedError

        if not self.connected:
            raise NotConnectedError()


class FakeExecutor:
    """Executor double returning canned text per command."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses: Dict[str, Any] = dict(responses or {})
        self.session = FakeSession()
        self.calls: List[str] = []

    async def run(self, command: str) -> str:
        self.calls.append(command)
        response = self.responses.get(command, "")
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response()
        return response


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_host() -> Callable[[], FakeHost]:
    return FakeHost
