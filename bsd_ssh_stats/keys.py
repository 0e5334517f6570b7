"""Private key classification and loading.

The key family is decided from the key's textual preamble, never from the
file name.
"""
from __future__ import annotations

import enum
import io
import logging
from typing import Optional

import paramiko

from .errors import KeyFormatError

_LOGGER = logging.getLogger(__name__)


class KeyFamily(enum.Enum):
    """Supported private key families."""

    ED25519 = "ed25519"
    RSA = "rsa"
    ECDSA = "ecdsa"


OPENSSH_PREAMBLE = "BEGIN OPENSSH PRIVATE KEY"

_PREAMBLES = (
    (KeyFamily.ED25519, (OPENSSH_PREAMBLE, "ssh-ed25519")),
    (KeyFamily.RSA, ("BEGIN RSA PRIVATE KEY", "BEGIN PRIVATE KEY")),
    (KeyFamily.ECDSA, ("BEGIN EC PRIVATE KEY",)),
)

_KEY_CLASSES = {
    KeyFamily.ED25519: paramiko.Ed25519Key,
    KeyFamily.RSA: paramiko.RSAKey,
    KeyFamily.ECDSA: paramiko.ECDSAKey,
}

UNSUPPORTED_KEY_MESSAGE = (
    "Unsupported key format. Please use RSA, Ed25519, or ECDSA P256 keys."
)

# ssh-keygen also writes RSA and ECDSA keys in the OpenSSH container, which
# is read as Ed25519 here.
OPENSSH_FORMAT_HINT = (
    "RSA and ECDSA keys in OpenSSH format are not supported; "
    "convert them to PEM with 'ssh-keygen -p -m PEM -f <key>'"
)


def classify_key(text: str) -> KeyFamily:
    """Return the key family announced by *text*.

    Raises :class:`KeyFormatError` when no known preamble is present.
    """
    for family, markers in _PREAMBLES:
        if any(marker in text for marker in markers):
            return family
    raise KeyFormatError(UNSUPPORTED_KEY_MESSAGE)


def load_private_key(text: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Classify *text* and load it with the matching paramiko key class."""
    family = classify_key(text)
    _LOGGER.debug("Detected %s private key", family.value)
    try:
        return _KEY_CLASSES[family].from_private_key(io.StringIO(text), password=passphrase)
    except paramiko.PasswordRequiredException as err:
        raise KeyFormatError(
            f"The {family.value} key is encrypted and needs a passphrase",
            hint="Set 'passphrase' in the connection profile",
        ) from err
    except (paramiko.SSHException, ValueError) as err:
        hint = None
        if family is KeyFamily.ED25519 and OPENSSH_PREAMBLE in text:
            hint = OPENSSH_FORMAT_HINT
        raise KeyFormatError(f"Could not load {family.value} key: {err}", hint=hint) from err
