"""Command execution on top of a :class:`~.session.Session`.

Three modes are offered: simple (combined output), detailed (stdout and
stderr kept apart) and streaming (incremental output plus exit status).
All of them hold a :class:`~.gate.CommandGate` ticket while their channel
is open. Simple and detailed calls cannot be cancelled once dispatched.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import re
import time
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

import paramiko

from .errors import CommandCancelledError, TransportError
from .gate import CommandGate
from .session import (
    FRAME_POLL_INTERVAL,
    READ_BUFFER,
    TRANSPORT_EXCEPTIONS,
    Session,
    describe_transport_error,
    read_all,
    read_frame,
)
from .util import maybe_await, run_blocking

_LOGGER = logging.getLogger(__name__)

# Forces a PTY on the remote side so the command does not block-buffer.
PTY_PREFIX = "script -q /dev/null"
EXIT_SENTINEL = "EXIT_CODE:"
MISSING_EXIT_STATUS = -1

_EXIT_RE = re.compile(re.escape(EXIT_SENTINEL) + r"\s*(-?\d+)")
_IDLE_SLEEP = 0.01

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


def escape_single_quotes(text: str) -> str:
    """Escape *text* for use inside a single quoted POSIX shell word."""
    return text.replace("'", "'\\''")


def wrap_streaming_command(command: str) -> str:
    """Wrap *command* for streaming execution.

    The result runs *command* under a PTY and prints ``EXIT_CODE:<n>`` once
    it finishes.
    """
    return f"{PTY_PREFIX} sh -c '{escape_single_quotes(command)}; echo {EXIT_SENTINEL}$?'"


def parse_exit_status(text: str) -> Optional[int]:
    """Return the status carried by the last sentinel in *text*, if any."""
    matches = _EXIT_RE.findall(text)
    if not matches:
        return None
    return int(matches[-1])


class SentinelFilter:
    """Split streamed text into caller content and the exit sentinel trailer.

    Text that could be the start of a sentinel split across two frames is
    held back until the next frame decides it.
    """

    def __init__(self) -> None:
        self._pending = ""
        self.trailer: Optional[str] = None

    def feed(self, text: str) -> str:
        """Add *text* and return the part that is safe to forward."""
        if self.trailer is not None:
            self.trailer += text
            return ""
        buf = self._pending + text
        idx = buf.find(EXIT_SENTINEL)
        if idx >= 0:
            self.trailer = buf[idx:]
            self._pending = ""
            return buf[:idx]
        keep = 0
        for size in range(min(len(EXIT_SENTINEL) - 1, len(buf)), 0, -1):
            if EXIT_SENTINEL.startswith(buf[-size:]):
                keep = size
                break
        self._pending = buf[len(buf) - keep:]
        return buf[: len(buf) - keep]

    def finish(self) -> str:
        """Release held back text at end of stream."""
        pending, self._pending = self._pending, ""
        return pending

    @property
    def exit_status(self) -> Optional[int]:
        if self.trailer is None:
            return None
        return parse_exit_status(self.trailer)


class CommandExecutor:
    """Gate-bounded command execution against one session."""

    def __init__(
        self,
        session: Session,
        gate: Optional[CommandGate] = None,
        *,
        poll_interval: float = FRAME_POLL_INTERVAL,
        bufsize: int = READ_BUFFER,
    ) -> None:
        self._session = session
        self.gate = gate or CommandGate()
        self._poll_interval = poll_interval
        self._bufsize = bufsize

    @property
    def session(self) -> Session:
        return self._session

    async def run(self, command: str) -> str:
        """Run *command* and return stdout and stderr combined.

        The remote exit status is not reported in this mode.
        """
        self._session.require_connected()
        async with self.gate.ticket():
            _LOGGER.debug("run: %s", command)
            data = await run_blocking(self._run_combined, command)
        return data.decode("utf-8", "replace")

    async def run_detailed(self, command: str) -> Tuple[str, str]:
        """Run *command* and return ``(stdout, stderr)``."""
        self._session.require_connected()
        async with self.gate.ticket():
            _LOGGER.debug("run_detailed: %s", command)
            out, err = await run_blocking(self._run_separated, command)
        return out.decode("utf-8", "replace"), err.decode("utf-8", "replace")

    async def run_streaming(
        self,
        command: str,
        on_chunk: ChunkCallback,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> int:
        """Run *command*, forwarding output to *on_chunk* as it arrives.

        Returns the remote exit status, or ``MISSING_EXIT_STATUS`` when the
        stream ended without a sentinel. Setting *cancel_event* aborts the
        read loop with :class:`CommandCancelledError`.
        """
        self._session.require_connected()
        wrapped = wrap_streaming_command(command)
        sentinel = SentinelFilter()
        async with self.gate.ticket():
            _LOGGER.debug("run_streaming: %s", command)
            channel = await run_blocking(self._session.open_channel, cleanup=_close)
            try:
                channel.settimeout(self._poll_interval)
                await run_blocking(channel.exec_command, wrapped)
                await self._pump(channel, sentinel, on_chunk, cancel_event)
            except TRANSPORT_EXCEPTIONS as err:
                raise TransportError(describe_transport_error(err, self._session.port)) from err
            finally:
                channel.close()

        status = sentinel.exit_status
        if status is None:
            _LOGGER.warning("No exit status received for %r", command)
            return MISSING_EXIT_STATUS
        return status

    async def _pump(
        self,
        channel: paramiko.Channel,
        sentinel: SentinelFilter,
        on_chunk: ChunkCallback,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")("replace")
        while True:
            _check_cancelled(cancel_event)
            frame = await run_blocking(read_frame, channel, self._bufsize)
            if frame is None:
                continue
            _, data = frame
            if not data:
                break
            _check_cancelled(cancel_event)
            text = sentinel.feed(decoder.decode(data))
            if text:
                await maybe_await(on_chunk(text))
        tail = sentinel.feed(decoder.decode(b"", final=True)) + sentinel.finish()
        if tail:
            await maybe_await(on_chunk(tail))

    def _run_combined(self, command: str) -> bytes:
        channel = self._session.open_channel()
        try:
            channel.set_combine_stderr(True)
            channel.exec_command(command)
            return read_all(channel, self._bufsize)
        except TRANSPORT_EXCEPTIONS as err:
            raise TransportError(describe_transport_error(err, self._session.port)) from err
        finally:
            channel.close()

    def _run_separated(self, command: str) -> Tuple[bytes, bytes]:
        channel = self._session.open_channel()
        stdout, stderr = [], []
        try:
            channel.exec_command(command)
            while True:
                progressed = False
                if channel.recv_ready():
                    data = channel.recv(self._bufsize)
                    if data:
                        stdout.append(data)
                        progressed = True
                if channel.recv_stderr_ready():
                    data = channel.recv_stderr(self._bufsize)
                    if data:
                        stderr.append(data)
                        progressed = True
                if (
                    channel.exit_status_ready()
                    and not channel.recv_ready()
                    and not channel.recv_stderr_ready()
                ):
                    break
                if not progressed:
                    time.sleep(_IDLE_SLEEP)
        except TRANSPORT_EXCEPTIONS as err:
            raise TransportError(describe_transport_error(err, self._session.port)) from err
        finally:
            channel.close()
        return b"".join(stdout), b"".join(stderr)


def _check_cancelled(cancel_event: Optional[Any]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CommandCancelledError("Command cancelled")


def _close(channel: paramiko.Channel) -> None:
    channel.close()
