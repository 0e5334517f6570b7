"""Websocket bridge between a browser terminal and the remote shell.

Run with ``python -m bsd_ssh_stats.app.terminal``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import websockets

from ..client import RemoteClient
from ..config import parse_server
from ..errors import RemoteError
from .collector import setup_logging

_LOGGER = logging.getLogger(__name__)

LISTEN_HOST = "0.0.0.0"
LISTEN_PORT = 8098


def _resize_request(message: Any) -> Optional[Dict[str, Any]]:
    """Return the decoded message if it is a ``{"resize": [cols, rows]}`` request."""
    if not isinstance(message, str) or not message.startswith('{"resize"'):
        return None
    try:
        data = json.loads(message)
    except ValueError:
        return None
    size = data.get("resize")
    if isinstance(size, list) and len(size) == 2 and all(isinstance(v, int) for v in size):
        return data
    return None


async def _bridge(websocket) -> None:
    """Bridge between a websocket and a remote shell.

    The first message from the client must be a JSON object containing
    `host`, `user`, `key` (private key path) and optional `port` (default 22).
    """

    try:
        params = json.loads(await websocket.recv())
        if not isinstance(params, dict):
            raise ValueError("handshake must be a JSON object")
        server = parse_server(
            {
                "host": params.get("host"),
                "username": params.get("user"),
                "key": params.get("key"),
                "port": params.get("port", 22),
            }
        )
    except (ValueError, RemoteError) as exc:
        await websocket.send(f"Invalid handshake data: {exc}\n")
        await websocket.close()
        return

    async with RemoteClient() as client:
        try:
            credential = await asyncio.to_thread(server.credential)
            await client.connect(server.host, server.port, credential)

            async def to_websocket(data: bytes, _stream: str) -> None:
                await websocket.send(data)

            shell = await client.open_shell(to_websocket)
        except RemoteError as exc:
            await websocket.send(f"Connection failed: {exc}\n")
            return

        async def from_websocket() -> None:
            async for message in websocket:
                resize = _resize_request(message)
                if resize is not None:
                    shell.resize(*resize["resize"])
                    continue
                if shell.input is None:
                    break
                await shell.input.write(message)

        reader = asyncio.create_task(from_websocket())
        closed = asyncio.create_task(shell.wait_closed())
        done, pending = await asyncio.wait({reader, closed}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                _LOGGER.warning("Terminal session error: %s", task.exception())
        await client.close_shell(shell)
        _LOGGER.info("Terminal session for %s ended", server.host)


async def main() -> None:
    """Run the websocket SSH bridge."""
    setup_logging(os.getenv("LOG_LEVEL", "INFO").upper())
    async with websockets.serve(_bridge, LISTEN_HOST, LISTEN_PORT):
        _LOGGER.info("Terminal bridge listening on %s:%s", LISTEN_HOST, LISTEN_PORT)
        await asyncio.Future()


if __name__ == "__main__":
    asyncio.run(main())
