"""Folder Vault errors.

Three families of failures are distinguished:

- ``ConfigurationError``: inconsistent inputs (mismatched task/IV counts,
  malformed key material). Fatal, raised before or instead of any commit.
- ``FileOperationError``: filesystem failures while scanning or processing a
  single file. Batches are fail-fast, so the first one aborts the batch.
- ``DecryptionError``: wrong key/IV or corrupt ciphertext.
"""
from typing import Optional


class FolderVaultError(Exception):
    """Base class for all Folder Vault errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} ({self.path})"
        return self.message


class ConfigurationError(FolderVaultError):
    """Invalid configuration or internal inconsistency."""


class ConsistencyError(ConfigurationError):
    """Parallel collections (tasks vs. IVs) disagree in length."""


class KeyMaterialError(ConfigurationError):
    """Key or IV is not valid base64 of the expected length."""


class FileOperationError(FolderVaultError):
    """A filesystem operation failed."""


class ScanError(FileOperationError):
    """A directory could not be enumerated."""


class OrphanedArtifactError(FileOperationError):
    """An IV sidecar exists without its ciphertext (or the reverse)."""


class CorruptSidecarError(FileOperationError):
    """An IV sidecar could not be read or does not hold a valid IV."""


class DecryptionError(FolderVaultError):
    """Ciphertext could not be decrypted (wrong key/IV, bad padding)."""


class OperationCancelled(FolderVaultError):
    """A batch was cancelled between two files."""


class RotationError(FolderVaultError):
    """A rotation failed after files were written under the new key.

    ``new_key`` must be persisted by the caller, otherwise those files are
    lost.
    """

    def __init__(self, message: str, new_key: str, path: Optional[str] = None):
        super().__init__(message, path=path)
        self.new_key = new_key
