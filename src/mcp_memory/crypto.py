"""
MCP Memory Crypto -- optional encryption at rest for stored memory content.

Content written to the record store and the vector payload is encrypted with
Fernet (AES-128-CBC + HMAC-SHA256) when enabled. The key lives at
``$MEMORY_HOME/.key`` and is created on first use with 0600 permissions.

Enabled by default. Disable with MEMORY_ENCRYPT=0.
"""

import base64
import logging
import os
import secrets
import sqlite3
import stat
from pathlib import Path

from mcp_memory.config import memory_home

logger = logging.getLogger("mcp_memory.crypto")

_PREFIX = "ENC:"

_fernet_instance = None
_checked = False


def _key_path() -> Path:
    return memory_home() / ".key"


def is_enabled() -> bool:
    """Encryption is on unless MEMORY_ENCRYPT is 0/false/no."""
    val = os.environ.get("MEMORY_ENCRYPT", "").strip().lower()
    return val not in ("0", "false", "no")


def reset_crypto_state() -> None:
    """Reset module state for test isolation."""
    global _fernet_instance, _checked
    _fernet_instance = None
    _checked = False


def _get_or_create_key() -> bytes:
    kp = _key_path()
    if kp.exists():
        raw = kp.read_bytes().strip()
        if len(raw) == 32:
            return base64.urlsafe_b64encode(raw)
        return raw

    kp.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    encoded_key = base64.urlsafe_b64encode(secrets.token_bytes(32))
    fd = os.open(str(kp), os.O_CREAT | os.O_WRONLY | os.O_EXCL, 0o600)
    try:
        os.write(fd, encoded_key)
    finally:
        os.close(fd)
    logger.info("Created encryption key at %s", kp)
    return encoded_key


def _get_fernet():
    global _fernet_instance, _checked
    if _fernet_instance is not None:
        return _fernet_instance
    if _checked:
        return None
    _checked = True

    from cryptography.fernet import Fernet

    try:
        _fernet_instance = Fernet(_get_or_create_key())
    except (OSError, ValueError) as e:
        logger.error("Failed to initialize encryption: %s", e)
        return None
    return _fernet_instance


def encrypt(plaintext: str) -> str:
    """Encrypt a string, returning ``ENC:<token>``. Plaintext passes through when disabled."""
    if not is_enabled():
        return plaintext
    f = _get_fernet()
    if f is None:
        return plaintext
    return _PREFIX + f.encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(data: str) -> str:
    """Decrypt a string produced by :func:`encrypt`.

    Values without the ``ENC:`` prefix are returned unchanged, so stores that
    were written before encryption was enabled stay readable.

    Raises ValueError when the key is missing or the token is corrupt.
    """
    if not data.startswith(_PREFIX):
        return data

    f = _get_fernet()
    if f is None:
        raise ValueError("Cannot decrypt: encryption key unavailable")

    from cryptography.fernet import InvalidToken

    try:
        return f.decrypt(data[len(_PREFIX):].encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise ValueError("Decryption failed: invalid token or wrong key") from e


def secure_connect(db_path, **kwargs) -> sqlite3.Connection:
    """Open a SQLite connection, creating the file with 0600 permissions first."""
    path_obj = Path(db_path)
    path_obj.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

    if not path_obj.exists():
        fd = os.open(str(path_obj), os.O_CREAT | os.O_WRONLY, 0o600)
        os.close(fd)
    else:
        current_mode = path_obj.stat().st_mode
        if current_mode & (stat.S_IRWXG | stat.S_IRWXO):
            os.chmod(str(path_obj), 0o600)

    return sqlite3.connect(str(path_obj), **kwargs)
