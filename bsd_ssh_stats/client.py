"""Public entry point: one :class:`RemoteClient` per window or context."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, FrozenSet, List, Optional, Tuple

import paramiko

from .errors import ShellError
from .executor import ChunkCallback, CommandExecutor
from .gate import DEFAULT_CHANNEL_LIMIT, CommandGate
from .net_cache import InterfaceRate
from .session import ALLOWED_PLATFORMS, Credential, Session
from .shell import OutputCallback, ReadyCallback, ShellBridge, ShellInput
from .telemetry import DiskRate, SystemStatus, TelemetryEngine
from .util import maybe_await

_LOGGER = logging.getLogger(__name__)


class RemoteClient:
    """Connection, command execution, shell and telemetry for one host.

    Instances share nothing; open one per window so that windows cannot
    interfere with each other's connection or telemetry baselines.
    """

    def __init__(
        self,
        *,
        channel_limit: int = DEFAULT_CHANNEL_LIMIT,
        allowed_platforms: FrozenSet[str] = ALLOWED_PLATFORMS,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = Session(allowed_platforms=allowed_platforms, client_factory=client_factory)
        self.gate = CommandGate(channel_limit)
        self.executor = CommandExecutor(self.session, self.gate)
        self.telemetry = TelemetryEngine(self.executor, clock=clock)
        self._shell: Optional[ShellBridge] = None
        self._pending_input: List[str] = []
        self._flushing = False

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    @property
    def connected(self) -> bool:
        return self.session.connected

    @property
    def shell(self) -> Optional[ShellBridge]:
        return self._shell

    # --- connection ---------------------------------------------------------

    async def connect(self, host: str, port: int, credential: Credential) -> None:
        """Connect and authenticate; raises on auth or platform failure."""
        await self.close_shell()
        self.telemetry.reset()
        await self.session.connect(host, port, credential)

    async def disconnect(self) -> None:
        """Close shell and connection. Never raises; safe to repeat."""
        await self.close_shell()
        await self.session.disconnect()
        self.telemetry.reset()

    # --- commands -----------------------------------------------------------

    async def run(self, command: str) -> str:
        return await self.executor.run(command)

    async def run_detailed(self, command: str) -> Tuple[str, str]:
        return await self.executor.run_detailed(command)

    async def run_streaming(
        self,
        command: str,
        on_chunk: ChunkCallback,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> int:
        return await self.executor.run_streaming(command, on_chunk, cancel_event=cancel_event)

    # --- interactive shell --------------------------------------------------

    async def open_shell(
        self,
        on_output: OutputCallback,
        on_ready: Optional[ReadyCallback] = None,
        **options,
    ) -> ShellBridge:
        """Open the interactive shell; only one may be active at a time."""
        if self._shell is not None and self._shell.active:
            raise ShellError("An interactive shell is already open")

        async def _ready(sink: ShellInput) -> None:
            self._flushing = True
            try:
                while self._pending_input:
                    await sink.send_command(self._pending_input.pop(0))
            finally:
                self._flushing = False
            if on_ready is not None:
                await maybe_await(on_ready(sink))

        bridge = ShellBridge(self.session, on_output, _ready, **options)
        self._shell = bridge
        try:
            await bridge.start()
        except BaseException:
            if self._shell is bridge:
                self._shell = None
            raise
        return bridge

    async def close_shell(self, handle: Optional[ShellBridge] = None) -> None:
        """Stop *handle* (default: the current shell)."""
        bridge = handle or self._shell
        if bridge is None:
            return
        await bridge.stop()
        if bridge is self._shell:
            self._shell = None
            self._pending_input = []

    async def send_shell_command(self, command: str) -> None:
        """Send *command* to the shell, or queue it until the shell is ready."""
        sink = self._shell.input if self._shell is not None else None
        if sink is None or self._flushing:
            _LOGGER.debug("Shell not ready; queueing command")
            self._pending_input.append(command)
            return
        await sink.send_command(command)

    # --- telemetry ----------------------------------------------------------

    async def poll_cpu_cores(self) -> List[float]:
        return await self.telemetry.poll_cpu_cores()

    async def poll_network_interfaces(self) -> List[InterfaceRate]:
        return await self.telemetry.poll_network_interfaces()

    async def poll_disk_io(self) -> List[DiskRate]:
        return await self.telemetry.poll_disk_io()

    async def fetch_system_status(self) -> SystemStatus:
        return await self.telemetry.fetch_system_status()
