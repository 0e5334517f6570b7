"""Diagnostics support for BSD SSH Stats."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping

if TYPE_CHECKING:
    from .client import RemoteClient

TO_REDACT = {"host", "username", "key", "key_path", "passphrase", "password"}
REDACTED = "**REDACTED**"


def redact_data(data: Any, to_redact: Iterable[str] = TO_REDACT) -> Any:
    """Return a copy of *data* with sensitive keys replaced."""
    keys = set(to_redact)
    if isinstance(data, Mapping):
        return {
            k: (REDACTED if k in keys and v not in (None, "") else redact_data(v, keys))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_data(item, keys) for item in data]
    return data


def session_diagnostics(client: "RemoteClient") -> Dict[str, Any]:
    """Return diagnostics for a client with credentials redacted."""
    session = client.session
    shell = client.shell
    return redact_data(
        {
            "session": {
                "connected": session.connected,
                "host": session.host,
                "port": session.port,
                "username": session.username,
                "key_path": session.key_path,
                "platform": session.platform,
                "last_error": session.last_error,
            },
            "gate": {
                "limit": client.gate.limit,
                "in_use": client.gate.in_use,
                "waiting": client.gate.waiting,
            },
            "shell": {
                "active": bool(shell and shell.active),
                "term": shell.term if shell else None,
                "columns": shell.columns if shell else None,
                "rows": shell.rows if shell else None,
            },
        }
    )
