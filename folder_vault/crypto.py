"""
Folder Vault Crypto Core — Streaming AES-256 file transform.

Every file is encrypted with AES-256 and PKCS#7 padding, streamed in bounded
chunks so memory use does not depend on the file size. A fresh random IV is
generated per file and returned to the caller, which stores it in a sidecar.

Cipher modes:
- ``CBC`` (default): the IV is chained into the transform.
- ``ECB`` (legacy): the IV is generated and persisted but never used by the
  cipher. This reproduces the on-disk format of trees written by the 0.1
  releases and is kept to read and maintain those trees.
  Trees written in one mode cannot be decrypted in the other.

Security Note:
    No integrity protection: a tampered ciphertext either fails unpadding or
    decrypts to altered plaintext. Never log keys, IVs or plaintext.
"""
import os
import base64
import binascii
import logging
from enum import Enum
from typing import BinaryIO, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import ConfigurationError, DecryptionError
from .keystore import decode_key

logger = logging.getLogger("folder_vault")

IV_SIZE = 16  # AES block size
BLOCK_BITS = 128
CHUNK_SIZE = 64 * 1024


class CipherMode(str, Enum):
    """Block cipher mode used for file contents."""

    CBC = "cbc"
    ECB = "ecb"


def resolve_mode(mode: Union[str, CipherMode, None] = None) -> CipherMode:
    """Return a ``CipherMode`` for a name, an enum value or ``None`` (default).

    Raises:
        ConfigurationError: If the name is not a supported mode.
    """
    if mode is None:
        return DEFAULT_MODE
    if isinstance(mode, CipherMode):
        return mode
    try:
        return CipherMode(str(mode).lower())
    except ValueError:
        raise ConfigurationError(f"Unsupported cipher mode: {mode}") from None


def _get_default_mode() -> CipherMode:
    """Return the cipher mode selected by FOLDER_VAULT_CIPHER_MODE."""
    value = os.environ.get("FOLDER_VAULT_CIPHER_MODE", "cbc").lower()
    if value == CipherMode.ECB.value:
        return CipherMode.ECB
    return CipherMode.CBC


# Resolved once at module load so encrypt and decrypt cannot disagree
# if the env var changes mid-process.
DEFAULT_MODE = _get_default_mode()


def generate_iv() -> str:
    """Return a fresh random 16-byte IV, base64 encoded."""
    return base64.b64encode(os.urandom(IV_SIZE)).decode("ascii")


def decode_iv(iv: str) -> bytes:
    """Decode a base64 IV and check its length.

    Raises:
        DecryptionError: If the IV is not valid base64 of 16 bytes.
    """
    try:
        raw = base64.b64decode(iv.strip(), validate=True)
    except (binascii.Error, ValueError, AttributeError) as err:
        raise DecryptionError(f"IV is not valid base64: {err}") from err
    if len(raw) != IV_SIZE:
        raise DecryptionError(
            f"IV must decode to exactly {IV_SIZE} bytes, got {len(raw)}"
        )
    return raw


def _build_cipher(key: str, iv: bytes, mode: CipherMode) -> Cipher:
    raw_key = decode_key(key)
    if mode is CipherMode.ECB:
        return Cipher(algorithms.AES(raw_key), modes.ECB())
    return Cipher(algorithms.AES(raw_key), modes.CBC(iv))


def _encrypt_into(
    src: BinaryIO,
    dst: BinaryIO,
    key: str,
    iv: bytes,
    mode: CipherMode,
    chunk_size: int,
) -> None:
    encryptor = _build_cipher(key, iv, mode).encryptor()
    padder = padding.PKCS7(BLOCK_BITS).padder()
    while True:
        chunk = src.read(chunk_size)
        if not chunk:
            break
        dst.write(encryptor.update(padder.update(chunk)))
    dst.write(encryptor.update(padder.finalize()) + encryptor.finalize())


def encrypt_stream(
    src: BinaryIO,
    dst: BinaryIO,
    key: str,
    mode: Union[str, CipherMode, None] = None,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    """Encrypt ``src`` into ``dst`` under ``key`` with a fresh IV.

    Args:
        src: Readable binary stream holding the plaintext.
        dst: Writable binary stream receiving the ciphertext.
        key: Base64-encoded 32-byte key.
        mode: Cipher mode, defaults to ``DEFAULT_MODE``.
        chunk_size: Bytes read from ``src`` per iteration.

    Returns:
        The base64-encoded IV generated for this stream.
    """
    iv = generate_iv()
    _encrypt_into(src, dst, key, decode_iv(iv), resolve_mode(mode), chunk_size)
    return iv


def decrypt_stream(
    src: BinaryIO,
    dst: BinaryIO,
    key: str,
    iv: str,
    mode: Union[str, CipherMode, None] = None,
    chunk_size: int = CHUNK_SIZE,
) -> None:
    """Decrypt ``src`` into ``dst`` using ``key`` and the stored ``iv``.

    Plaintext is written as it is produced; on failure ``dst`` holds a
    truncated prefix and must be discarded by the caller.

    Raises:
        DecryptionError: Wrong IV, truncated ciphertext or invalid padding.
        KeyMaterialError: The key is not base64 of 32 bytes.
    """
    decryptor = _build_cipher(key, decode_iv(iv), resolve_mode(mode)).decryptor()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        while True:
            chunk = src.read(chunk_size)
            if not chunk:
                break
            dst.write(unpadder.update(decryptor.update(chunk)))
        dst.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
    except ValueError as err:
        raise DecryptionError(
            f"Decryption failed, wrong key or corrupt ciphertext: {err}"
        ) from err


class _DecryptingReader:
    """File-like adapter yielding plaintext from a ciphertext stream."""

    def __init__(self, src: BinaryIO, key: str, iv: str, mode: CipherMode):
        self._src = src
        self._decryptor = _build_cipher(key, decode_iv(iv), mode).decryptor()
        self._unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
        self._done = False

    def read(self, size: int) -> bytes:
        while not self._done:
            chunk = self._src.read(size)
            try:
                if chunk:
                    out = self._unpadder.update(self._decryptor.update(chunk))
                else:
                    self._done = True
                    out = (
                        self._unpadder.update(self._decryptor.finalize())
                        + self._unpadder.finalize()
                    )
            except ValueError as err:
                raise DecryptionError(
                    f"Decryption failed, wrong key or corrupt ciphertext: {err}"
                ) from err
            if out:
                return out
        return b""


def reencrypt_stream(
    src: BinaryIO,
    dst: BinaryIO,
    old_key: str,
    old_iv: str,
    new_key: str,
    mode: Union[str, CipherMode, None] = None,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    """Decrypt ``src`` under the old key and encrypt it under the new one.

    Plaintext only exists in memory, one chunk at a time.

    Returns:
        The base64-encoded IV of the new ciphertext.
    """
    mode = resolve_mode(mode)
    reader = _DecryptingReader(src, old_key, old_iv, mode)
    iv = generate_iv()
    _encrypt_into(reader, dst, new_key, decode_iv(iv), mode, chunk_size)
    return iv
