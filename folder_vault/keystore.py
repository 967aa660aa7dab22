"""
Key Store — Loading, generating and persisting the tree's symmetric key.

The key file holds a single base64-encoded 32-byte key, plain text, with no
trailing newline and no metadata.

Security Note:
    The key file is not protected in any way; anyone able to read it can
    decrypt the tree. Never log key material, only the key path.
    ``load_or_generate_key`` is not guarded against concurrent callers: two
    processes racing on a missing key file may each generate and write a key.
"""
import os
import base64
import binascii
import secrets
import logging
from pathlib import Path
from typing import Union

from .exceptions import KeyMaterialError

logger = logging.getLogger("folder_vault")

KEY_LENGTH = 32  # AES-256

PathLike = Union[str, os.PathLike]


def generate_key() -> str:
    """Generate a random 32-byte key and return it as a base64 string.

    Returns:
        Base64-encoded 32-byte key string.
    """
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def decode_key(key: str) -> bytes:
    """Decode a base64 key and check its length.

    Args:
        key: Base64-encoded key material.

    Returns:
        Raw 32-byte key.

    Raises:
        KeyMaterialError: If the key is not valid base64 or not 32 bytes long.
    """
    try:
        raw = base64.b64decode(key.strip(), validate=True)
    except (binascii.Error, ValueError, AttributeError) as err:
        raise KeyMaterialError(f"Key is not valid base64: {err}") from err
    if len(raw) != KEY_LENGTH:
        raise KeyMaterialError(
            f"Key must decode to exactly {KEY_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def load_or_generate_key(path: PathLike) -> str:
    """Load the key stored at ``path``, generating and saving one if absent.

    The stored value is returned verbatim; it is only validated when it is
    first used to build a cipher.

    Args:
        path: Location of the key file.

    Returns:
        Base64-encoded key string.
    """
    path = Path(path)
    if not path.exists():
        key = generate_key()
        path.write_text(key, encoding="ascii")
        logger.warning("No key found, generated a new key at %s", path)
        return key
    logger.debug("Loading key from %s", path)
    return path.read_text(encoding="ascii")


def save_key(path: PathLike, key: str) -> None:
    """Persist ``key`` at ``path``, replacing any previous key atomically.

    The new value is written to a sibling temporary file, flushed to disk and
    renamed over the old file, so a crash leaves either the old or the new key.

    Args:
        path: Location of the key file.
        key: Base64-encoded key to store.
    """
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="ascii") as fp:
        fp.write(key)
        fp.flush()
        os.fsync(fp.fileno())
    os.replace(tmp, path)
    logger.info("Key saved to %s", path)
