"""Utility helpers for BSD SSH Stats."""
from __future__ import annotations

import asyncio
import inspect
import logging
import re
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def resolve_private_key_path(key: Optional[str], base_dir: Optional[str] = None) -> Optional[str]:
    """Return an absolute path for an SSH private key.

    Keys may be provided as absolute paths, paths relative to *base_dir*
    (the current directory when omitted), or with a leading ``~`` to refer
    to the user's home. ``None`` or empty values pass through unchanged.
    """

    if not key:
        return None

    path = Path(key).expanduser()
    if not path.is_absolute():
        path = Path(base_dir or Path.cwd()) / path
    return str(path)


def sanitize(name: str) -> str:
    """Return a lowercase, MQTT friendly name."""
    return re.sub(r"[^a-zA-Z0-9_]+", "_", name).lower()


async def maybe_await(result: Any) -> Any:
    """Await *result* when a callback returned an awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result


async def run_blocking(
    func: Callable[..., T],
    *args: Any,
    cleanup: Optional[Callable[[T], Any]] = None,
) -> T:
    """Run *func* in a worker thread that is never abandoned.

    If the caller is cancelled the worker is still awaited before
    ``CancelledError`` propagates, so whatever it holds is released first.
    A result produced after cancellation is passed to *cleanup*.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        try:
            result = await task
        except Exception as err:
            _LOGGER.debug("Worker failed after cancellation: %s", err)
        else:
            if cleanup is not None:
                cleanup(result)
        raise
