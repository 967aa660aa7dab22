"""
Key Rotation — Re-encrypt a whole tree under a freshly generated key.

Two strategies are available:

``two-phase`` (default)
    Decrypt the entire tree under the old key, deleting ciphertexts and
    sidecars, then generate a new key and encrypt the now-plaintext tree,
    deleting the plaintexts.

    Security Note:
        Between the two phases, and during the second one, the tree is
        plaintext on disk. A crash in that window leaves sensitive data
        unencrypted with no ciphertext fallback. This is inherent to the
        strategy.

``in-place``
    Stream each ciphertext through decrypt-then-encrypt into a temporary
    file, write the new sidecar next to it, and rename both over the old
    artifacts. Plaintext never reaches the disk; a crash can only leave the
    single file between its two renames with a mismatched sidecar. If the
    sidecar rename fails once the ciphertext was replaced, the new IV is
    kept in ``<file>.iv.part`` and named by the ``RotationError``. Plaintext
    files found in the tree are left as they are, unlike ``two-phase`` which
    encrypts them too.

In both strategies the caller persists the returned key
(``keystore.save_key``). If a failure happens after any file was written
under the new key, ``RotationError`` carries that key so it is not lost.
The in-place strategy always raises ``RotationError`` on failure since a
file can be half-committed.
"""
import os
import logging
import threading
from pathlib import Path
from typing import AbstractSet, Optional, Union

from .crypto import reencrypt_stream, resolve_mode
from .exceptions import ConfigurationError, FolderVaultError, RotationError
from .executor import (
    ModeLike,
    check_cancel,
    ciphertext_present,
    decrypt_all,
    encrypt_all,
    write_atomic,
)
from .keystore import decode_key, generate_key
from .scanner import PARTIAL_SUFFIX, scan_for_decryption

logger = logging.getLogger("folder_vault")

TWO_PHASE = "two-phase"
IN_PLACE = "in-place"
STRATEGIES = (TWO_PHASE, IN_PLACE)


def rotate_key(
    root: Union[str, os.PathLike],
    exceptions: AbstractSet[str],
    old_key: str,
    mode: ModeLike = None,
    strategy: str = TWO_PHASE,
    cancel: Optional[threading.Event] = None,
) -> str:
    """Replace the key of every encrypted file under ``root``.

    Args:
        root: Tree root.
        exceptions: Root-relative paths to leave untouched.
        old_key: Base64 key the tree is currently encrypted with.
        mode: Cipher mode, used for both decryption and encryption.
        strategy: ``"two-phase"`` or ``"in-place"``.
        cancel: Optional event checked between files.

    Returns:
        The new base64 key. The caller is responsible for persisting it.

    Raises:
        ConfigurationError: If the strategy is unknown.
        RotationError: If the rotation failed after using the new key.
    """
    if strategy not in STRATEGIES:
        raise ConfigurationError(f"Unknown rotation strategy: {strategy}")
    decode_key(old_key)
    mode = resolve_mode(mode)
    logger.info("Starting key rotation of %s (strategy=%s)", root, strategy)
    if strategy == IN_PLACE:
        return _rotate_in_place(root, exceptions, old_key, mode, cancel)
    return _rotate_two_phase(root, exceptions, old_key, mode, cancel)


def _rotate_two_phase(root, exceptions, old_key, mode, cancel) -> str:
    stats = decrypt_all(
        root, exceptions, old_key, delete_cipher=True, mode=mode, cancel=cancel,
    )
    logger.warning(
        "Tree %s is plaintext on disk until re-encryption completes "
        "(%d file(s) decrypted)", root, stats.processed,
    )
    new_key = generate_key()
    try:
        stats = encrypt_all(
            root, exceptions, new_key, delete_original=True, mode=mode,
            cancel=cancel,
        )
    except FolderVaultError as err:
        raise RotationError(
            f"Re-encryption failed, tree is partly plaintext: {err}",
            new_key=new_key, path=err.path,
        ) from err
    logger.info("Key rotation complete: %d file(s) re-encrypted", stats.processed)
    return new_key


def _replace_pair(cipher_path: Path, iv_path: Path, new_key, old_key, old_iv, mode) -> None:
    cipher_part = cipher_path.with_name(cipher_path.name + PARTIAL_SUFFIX)
    with open(cipher_path, "rb") as src:
        new_iv = write_atomic(
            cipher_part,
            lambda dst: reencrypt_stream(src, dst, old_key, old_iv, new_key, mode),
        )
    iv_part = iv_path.with_name(iv_path.name + PARTIAL_SUFFIX)
    write_atomic(iv_part, lambda fp: fp.write(new_iv.encode("ascii")))
    os.replace(cipher_part, cipher_path)
    try:
        os.replace(iv_part, iv_path)
    except OSError as err:
        raise RotationError(
            f"Ciphertext was re-encrypted but its new IV could not replace "
            f"{iv_path.name}: {err.strerror or err}",
            new_key=new_key, path=iv_part,
        ) from err


def _rotate_in_place(root, exceptions, old_key, mode, cancel) -> str:
    tasks = scan_for_decryption(root, exceptions)
    new_key = generate_key()
    stats = {"total": len(tasks), "rotated": 0}
    for task in tasks:
        try:
            check_cancel(cancel)
            if not ciphertext_present(task):
                continue
            _replace_pair(
                task.source, task.iv_path, new_key, old_key, task.iv, mode,
            )
        except RotationError:
            raise
        except (FolderVaultError, OSError) as err:
            for leftover in (task.source, task.iv_path):
                partial = leftover.with_name(leftover.name + PARTIAL_SUFFIX)
                partial.unlink(missing_ok=True)
            raise RotationError(
                f"Rotation stopped after {stats['rotated']} of "
                f"{stats['total']} file(s): {err}",
                new_key=new_key, path=str(task.source),
            ) from err
        stats["rotated"] += 1
        logger.debug("Rotated %s", task.source)
    logger.info("Key rotation complete: %s", stats)
    return new_key
