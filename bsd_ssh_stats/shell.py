"""Interactive shell bridge.

A single long-lived PTY channel that is not bounded by the command gate.
Output bytes are forwarded verbatim so terminal escape sequences survive.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional, Union

import paramiko

from .errors import ShellError
from .session import FRAME_POLL_INTERVAL, READ_BUFFER, TRANSPORT_EXCEPTIONS, Session, read_frame
from .util import maybe_await, run_blocking

_LOGGER = logging.getLogger(__name__)

DEFAULT_TERM = "xterm-256color"
DEFAULT_COLUMNS = 80
DEFAULT_ROWS = 24

OutputCallback = Callable[[bytes, str], Union[None, Awaitable[None]]]


class ShellInput:
    """Writer handle for the remote shell's input."""

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel
        self.closed = False

    async def write(self, data: Union[bytes, str]) -> None:
        """Send raw keystrokes or text to the shell."""
        if self.closed:
            raise ShellError("Shell input is closed")
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            await asyncio.to_thread(self._channel.sendall, data)
        except TRANSPORT_EXCEPTIONS as err:
            raise ShellError(f"Failed to send data: {err}") from err

    async def send_command(self, command: str) -> None:
        """Type *command* followed by a newline."""
        await self.write(command + "\n")


ReadyCallback = Callable[[ShellInput], Union[None, Awaitable[None]]]


class ShellBridge:
    """Bridge between one remote PTY and a terminal renderer.

    *on_output* receives ``(data, stream)`` for every frame, where *stream*
    is ``"stdout"`` or ``"stderr"``. *on_ready* receives the
    :class:`ShellInput` once the PTY is negotiated; before that no input can
    be sent and the bridge does not buffer any.
    """

    def __init__(
        self,
        session: Session,
        on_output: OutputCallback,
        on_ready: Optional[ReadyCallback] = None,
        *,
        term: str = DEFAULT_TERM,
        columns: int = DEFAULT_COLUMNS,
        rows: int = DEFAULT_ROWS,
        poll_interval: float = FRAME_POLL_INTERVAL,
        bufsize: int = READ_BUFFER,
    ) -> None:
        self._session = session
        self._on_output = on_output
        self._on_ready = on_ready
        self.term = term
        self.columns = columns
        self.rows = rows
        self._poll_interval = poll_interval
        self._bufsize = bufsize
        self._channel: Optional[paramiko.Channel] = None
        self._input: Optional[ShellInput] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def input(self) -> Optional[ShellInput]:
        """The input sink, or ``None`` before negotiation and after stop."""
        return self._input

    async def start(self) -> None:
        """Negotiate the PTY, start the read loop and announce the input sink."""
        if self._task is not None:
            raise ShellError("Shell already started")
        self._session.require_connected()
        channel = await run_blocking(
            self._session.open_shell_channel,
            self.term,
            self.columns,
            self.rows,
            cleanup=lambda opened: opened.close(),
        )
        channel.settimeout(self._poll_interval)
        self._channel = channel
        self._input = ShellInput(channel)
        self._task = asyncio.create_task(self._read_loop())
        _LOGGER.info("Interactive shell opened (%s %sx%s)", self.term, self.columns, self.rows)
        if self._on_ready is not None:
            await maybe_await(self._on_ready(self._input))

    def resize(self, columns: int, rows: int) -> None:
        """Propagate a local terminal resize to the remote PTY."""
        if self._channel is None:
            raise ShellError("Shell is not running")
        try:
            self._channel.resize_pty(width=columns, height=rows)
        except TRANSPORT_EXCEPTIONS as err:
            raise ShellError(f"Failed to resize terminal: {err}") from err
        self.columns = columns
        self.rows = rows
        _LOGGER.debug("Terminal resized to %sx%s", columns, rows)

    async def stop(self) -> None:
        """Cancel the read loop and drop the input sink."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._teardown()

    async def wait_closed(self) -> None:
        """Wait until the remote side closes the shell or :meth:`stop` runs."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _read_loop(self) -> None:
        channel = self._channel
        try:
            while True:
                frame = await asyncio.to_thread(read_frame, channel, self._bufsize)
                if frame is None:
                    continue
                stream, data = frame
                if not data:
                    _LOGGER.info("Remote shell closed")
                    break
                await maybe_await(self._on_output(data, stream))
        except TRANSPORT_EXCEPTIONS as err:
            _LOGGER.warning("Shell connection lost: %s", err)
        finally:
            self._teardown()

    def _teardown(self) -> None:
        if self._input is not None:
            self._input.closed = True
            self._input = None
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()
