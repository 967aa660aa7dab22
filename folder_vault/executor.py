"""
Batch Executor — Encrypt or decrypt every file of a work list.

Failure policy is fail-fast: the first file that cannot be processed aborts
the batch and its error propagates to the caller. Files processed before the
failure stay processed, files after it are untouched, and the failing file's
partial output is removed. Re-running the same operation resumes the work.

Durability rules:
- every output is written to ``<destination>.part``, flushed, fsynced and
  renamed over the destination;
- a source is deleted only after its replacement (and, for encryption, the IV
  sidecar) is durable;
- decryption removes the sidecar before the ciphertext, so an interrupted
  deletion leaves at most a ciphertext without sidecar next to its restored
  plaintext.

Encryption runs in two passes: all ciphertexts first, then sidecars and
deletions once the IV count has been checked against the task count. A crash
during the first pass leaves every original in place.

Not safe to run concurrently against one tree, from threads or processes.
"""
import os
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import AbstractSet, Any, BinaryIO, Callable, Optional, Sequence, Union

from .crypto import CipherMode, decrypt_stream, encrypt_stream, resolve_mode
from .exceptions import (
    ConsistencyError,
    FileOperationError,
    FolderVaultError,
    OperationCancelled,
    OrphanedArtifactError,
)
from .keystore import decode_key
from .scanner import (
    IV_SUFFIX,
    PARTIAL_SUFFIX,
    FileTask,
    scan_for_decryption,
    scan_for_encryption,
)

logger = logging.getLogger("folder_vault")

ModeLike = Union[str, CipherMode, None]


@dataclass
class BatchResult:
    """Outcome of one batch."""

    total: int = 0
    processed: int = 0
    deleted: int = 0
    outputs: list[Path] = field(default_factory=list)


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("Batch cancelled before next file")


def write_atomic(destination: Path, writer: Callable[[BinaryIO], Any]) -> Any:
    """Write ``destination`` through a fsynced ``.part`` file and rename it.

    Args:
        destination: Final path of the output.
        writer: Callable receiving the open binary temporary file.

    Returns:
        Whatever ``writer`` returns.

    Raises:
        FileOperationError: If the output cannot be written.
    """
    partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
    try:
        with open(partial, "wb") as fp:
            value = writer(fp)
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(partial, destination)
        return value
    except BaseException as err:
        try:
            partial.unlink()
        except FileNotFoundError:
            pass
        if isinstance(err, OSError):
            raise FileOperationError(
                f"Cannot write output: {err.strerror or err}", path=destination,
            ) from err
        raise


def _delete(path: Path) -> None:
    try:
        path.unlink()
    except OSError as err:
        raise FileOperationError(
            f"Cannot delete file: {err.strerror or err}", path=path,
        ) from err


def _open_source(path: Path) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as err:
        raise FileOperationError(
            f"Cannot read file: {err.strerror or err}", path=path,
        ) from err


def pair_ivs(tasks: Sequence[FileTask], ivs: Sequence[str]) -> list[tuple[FileTask, str]]:
    """Pair every task with its IV.

    Raises:
        ConsistencyError: If the counts differ.
    """
    if len(tasks) != len(ivs):
        raise ConsistencyError(
            f"IV count mismatch: {len(ivs)} IV(s) for {len(tasks)} file(s)"
        )
    return list(zip(tasks, ivs))


def ciphertext_present(task: FileTask) -> bool:
    """Check that a decryption task still has its ciphertext.

    A sidecar whose ciphertext is gone but whose plaintext exists is what an
    interrupted decryption leaves behind; the file counts as already
    decrypted.

    Returns:
        False if the file was already decrypted.

    Raises:
        OrphanedArtifactError: If neither the ciphertext nor the plaintext
            exists.
    """
    if task.source.exists():
        return True
    if task.destination.exists():
        logger.warning(
            "Sidecar %s has no ciphertext but %s exists, treating it as decrypted",
            task.iv_path, task.destination,
        )
        return False
    raise OrphanedArtifactError(
        "IV sidecar found without its ciphertext", path=task.source,
    )


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def encrypt_tasks(
    tasks: Sequence[FileTask],
    key: str,
    mode: ModeLike = None,
    cancel: Optional[threading.Event] = None,
) -> list[str]:
    """Encrypt each task's source into its destination.

    Sources are never deleted here and no sidecar is written.

    Returns:
        The base64 IVs, one per task, in task order.
    """
    decode_key(key)
    mode = resolve_mode(mode)
    ivs = []
    for task in tasks:
        check_cancel(cancel)
        with _open_source(task.source) as src:
            ivs.append(write_atomic(
                task.destination,
                lambda dst: encrypt_stream(src, dst, key, mode),
            ))
        logger.debug("Encrypted %s", task.source)
    return ivs


def encrypt_all(
    root: Union[str, os.PathLike],
    exceptions: AbstractSet[str],
    key: str,
    delete_original: bool = False,
    mode: ModeLike = None,
    cancel: Optional[threading.Event] = None,
) -> BatchResult:
    """Encrypt every eligible file under ``root``.

    Args:
        root: Tree root.
        exceptions: Root-relative paths to leave untouched.
        key: Base64-encoded 32-byte key.
        delete_original: Remove each plaintext once its ciphertext and
            sidecar are on disk.
        mode: Cipher mode, defaults to ``crypto.DEFAULT_MODE``.
        cancel: Optional event checked between files.

    Returns:
        Batch statistics; ``outputs`` lists the ciphertext paths.

    Raises:
        ConsistencyError: If the IV count differs from the task count.
        FileOperationError: On the first file that cannot be processed.
    """
    tasks = scan_for_encryption(root, exceptions, delete_source=delete_original)
    result = BatchResult(total=len(tasks))
    logger.info("Encrypting %d file(s) under %s", len(tasks), root)

    ivs = encrypt_tasks(tasks, key, mode=mode, cancel=cancel)
    for task, iv in pair_ivs(tasks, ivs):
        iv_path = task.source.with_name(task.source.name + IV_SUFFIX)
        write_atomic(iv_path, lambda fp, iv=iv: fp.write(iv.encode("ascii")))
        result.processed += 1
        result.outputs.append(task.destination)
        if task.delete_source:
            _delete(task.source)
            result.deleted += 1

    logger.info(
        "Encryption complete: %d processed, %d deleted",
        result.processed, result.deleted,
    )
    return result


# ---------------------------------------------------------------------------
# Decryption
# ---------------------------------------------------------------------------

def decrypt_tasks(
    tasks: Sequence[FileTask],
    key: str,
    mode: ModeLike = None,
    cancel: Optional[threading.Event] = None,
) -> list[Path]:
    """Decrypt each task's ciphertext into its plaintext destination.

    When a task has ``delete_source`` set, the sidecar and then the ciphertext
    are removed after the plaintext is durable. A leftover sidecar of a file
    decrypted by an interrupted run is skipped, and removed along with the
    other sidecars.

    Returns:
        The plaintext paths written, in task order.

    Raises:
        ConsistencyError: If a task carries no IV.
        OrphanedArtifactError: If a sidecar has neither ciphertext nor plaintext.
        DecryptionError: Wrong key or corrupt ciphertext.
    """
    decode_key(key)
    mode = resolve_mode(mode)
    outputs = []
    for task in tasks:
        check_cancel(cancel)
        if task.iv is None:
            raise ConsistencyError("Decryption task has no IV", path=task.source)
        if not ciphertext_present(task):
            if task.delete_source and task.iv_path is not None:
                _delete(task.iv_path)
            continue
        with _open_source(task.source) as src:
            try:
                write_atomic(
                    task.destination,
                    lambda dst: decrypt_stream(src, dst, key, task.iv, mode),
                )
            except FolderVaultError as err:
                if err.path is None:
                    err.path = str(task.source)
                raise
        if task.delete_source:
            if task.iv_path is not None:
                _delete(task.iv_path)
            _delete(task.source)
        outputs.append(task.destination)
        logger.debug("Decrypted %s", task.source)
    return outputs


def decrypt_all(
    root: Union[str, os.PathLike],
    exceptions: AbstractSet[str],
    key: str,
    delete_cipher: bool = False,
    mode: ModeLike = None,
    cancel: Optional[threading.Event] = None,
) -> BatchResult:
    """Decrypt every encrypted file under ``root``.

    Args:
        root: Tree root.
        exceptions: Root-relative plaintext paths to leave encrypted.
        key: Base64-encoded 32-byte key.
        delete_cipher: Remove ciphertext and sidecar after each file.
        mode: Cipher mode, defaults to ``crypto.DEFAULT_MODE``.
        cancel: Optional event checked between files.

    Returns:
        Batch statistics; ``outputs`` lists the plaintext paths.
    """
    tasks = scan_for_decryption(root, exceptions, delete_source=delete_cipher)
    result = BatchResult(total=len(tasks))
    logger.info("Decrypting %d file(s) under %s", len(tasks), root)

    result.outputs = decrypt_tasks(tasks, key, mode=mode, cancel=cancel)
    result.processed = len(result.outputs)
    if delete_cipher:
        result.deleted = result.processed

    logger.info(
        "Decryption complete: %d processed, %d deleted",
        result.processed, result.deleted,
    )
    return result
