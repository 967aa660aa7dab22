"""
Tree Scanner — Breadth-first discovery of files to encrypt or decrypt.

A scan walks the tree from ``root`` breadth-first and returns an immutable
work list; it never modifies the filesystem. Paths are matched against the
exception set by their root-relative form with ``/`` separators, e.g.
``"sub/b.txt"``. An excepted directory is not descended at all.

Artifacts are tagged by suffix next to the plaintext path::

    notes.txt       plaintext
    notes.txt.gpg   ciphertext
    notes.txt.iv    base64 IV sidecar
    notes.txt.gpg.part, notes.txt.iv.part, notes.txt.part
                    temporary outputs of an interrupted write

A plaintext file of the user that merely ends in ``.part`` is encrypted like
any other; only names that match a temporary output of the tool are skipped.

Ordering: directories are visited breadth-first; entries inside one
directory are sorted by name for reproducible runs, but no caller may rely on
any order beyond that.
"""
import os
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, Iterator, Optional, Union

from .crypto import decode_iv
from .exceptions import CorruptSidecarError, DecryptionError, ScanError

logger = logging.getLogger("folder_vault")

CIPHER_SUFFIX = ".gpg"
IV_SUFFIX = ".iv"
PARTIAL_SUFFIX = ".part"

_ARTIFACT_SUFFIXES = (CIPHER_SUFFIX, IV_SUFFIX)
_PARTIAL_ARTIFACT_SUFFIXES = tuple(
    suffix + PARTIAL_SUFFIX for suffix in (CIPHER_SUFFIX, IV_SUFFIX, PARTIAL_SUFFIX)
)


@dataclass(frozen=True)
class FileTask:
    """One cipher operation: read ``source``, write ``destination``."""

    source: Path
    destination: Path
    delete_source: bool = False
    iv: Optional[str] = None
    iv_path: Optional[Path] = None


WorkList = tuple[FileTask, ...]


def relative_path(root: Union[str, os.PathLike], path: Union[str, os.PathLike]) -> str:
    """Return ``path`` relative to ``root`` using ``/`` separators."""
    return Path(path).relative_to(root).as_posix()


def _is_partial_output(path: Path) -> bool:
    """Tell whether ``path`` is a temporary output left by an interrupted write.

    Ciphertext and sidecar temporaries carry their artifact suffix before
    ``.part``. A decrypted plaintext is written to ``<file>.part`` while the
    ``<file>.iv`` sidecar it comes from is still present.
    """
    name = path.name
    if not name.endswith(PARTIAL_SUFFIX):
        return False
    if name.endswith(_PARTIAL_ARTIFACT_SUFFIXES):
        return True
    stem = name[:-len(PARTIAL_SUFFIX)]
    return path.with_name(stem + IV_SUFFIX).exists()


def _walk(root: Path, exceptions: AbstractSet[str]) -> Iterator[os.DirEntry]:
    """Yield regular files of every non-excepted directory, breadth-first.

    Raises:
        ScanError: If a directory cannot be enumerated.
    """
    pending = deque([root])
    while pending:
        directory = pending.popleft()
        if directory != root and relative_path(root, directory) in exceptions:
            logger.debug("Skipping excepted directory %s", directory)
            continue
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
            files = []
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    pending.append(Path(entry.path))
                elif entry.is_file():
                    files.append(entry)
        except OSError as err:
            raise ScanError(
                f"Cannot enumerate directory: {err.strerror or err}",
                path=directory,
            ) from err
        yield from files


def scan_for_encryption(
    root: Union[str, os.PathLike],
    exceptions: AbstractSet[str],
    delete_source: bool = False,
) -> WorkList:
    """Collect every plaintext file under ``root`` that should be encrypted.

    Ciphertexts, sidecars and partial outputs are skipped so running the scan
    again after an encryption pass does not pick up its own artifacts.

    Args:
        root: Tree root.
        exceptions: Root-relative paths of files and directories to ignore.
        delete_source: Flag copied into every task.

    Returns:
        Work list mapping ``file`` to ``file.gpg``.
    """
    root = Path(root)
    tasks = []
    for entry in _walk(root, exceptions):
        source = Path(entry.path)
        if entry.name.endswith(_ARTIFACT_SUFFIXES):
            continue
        if _is_partial_output(source):
            logger.warning("Skipping leftover partial output %s", source)
            continue
        if relative_path(root, source) in exceptions:
            continue
        tasks.append(FileTask(
            source=source,
            destination=source.with_name(source.name + CIPHER_SUFFIX),
            delete_source=delete_source,
        ))
    logger.debug("Encryption scan of %s found %d file(s)", root, len(tasks))
    return tuple(tasks)


def _read_sidecar(iv_path: Path) -> str:
    try:
        iv = iv_path.read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError) as err:
        raise CorruptSidecarError(
            f"Cannot read IV sidecar: {err}", path=iv_path,
        ) from err
    try:
        decode_iv(iv)
    except DecryptionError as err:
        raise CorruptSidecarError(err.message, path=iv_path) from err
    return iv.strip()


def scan_for_decryption(
    root: Union[str, os.PathLike],
    exceptions: AbstractSet[str],
    delete_source: bool = False,
) -> WorkList:
    """Collect every encrypted file under ``root``, located by its IV sidecar.

    Args:
        root: Tree root.
        exceptions: Root-relative paths of files and directories to ignore.
            A file is excepted by its plaintext path.
        delete_source: Flag copied into every task.

    Returns:
        Work list mapping ``file.gpg`` to ``file``, carrying the sidecar IV.

    Raises:
        CorruptSidecarError: A sidecar is unreadable or holds an invalid IV.
    """
    root = Path(root)
    tasks = []
    for entry in _walk(root, exceptions):
        if entry.name == IV_SUFFIX or not entry.name.endswith(IV_SUFFIX):
            continue
        iv_path = Path(entry.path)
        plain = iv_path.with_name(iv_path.name[:-len(IV_SUFFIX)])
        if relative_path(root, plain) in exceptions:
            continue
        tasks.append(FileTask(
            source=plain.with_name(plain.name + CIPHER_SUFFIX),
            destination=plain,
            delete_source=delete_source,
            iv=_read_sidecar(iv_path),
            iv_path=iv_path,
        ))
    logger.debug("Decryption scan of %s found %d file(s)", root, len(tasks))
    return tuple(tasks)
