"""Folder Vault — Bulk encryption of a directory tree under one key.

Security Note (Threat Model):
    Files are encrypted with AES-256 without authentication; tampering is
    not detected. The key file is stored as plain base64 text.
    No operation is atomic across files and two operations must never run
    against the same tree at the same time (from threads or processes).
    The default ``two-phase`` rotation leaves the tree plaintext on disk
    while it runs; see ``folder_vault.rotation``.
"""

from .version import __version__
from .keystore import generate_key, load_or_generate_key, save_key
from .crypto import CipherMode, encrypt_stream, decrypt_stream
from .scanner import FileTask, scan_for_encryption, scan_for_decryption
from .executor import BatchResult, encrypt_all, decrypt_all
from .rotation import rotate_key
from .config import VaultConfig

__all__ = [
    "__version__",
    "generate_key",
    "load_or_generate_key",
    "save_key",
    "CipherMode",
    "encrypt_stream",
    "decrypt_stream",
    "FileTask",
    "scan_for_encryption",
    "scan_for_decryption",
    "BatchResult",
    "encrypt_all",
    "decrypt_all",
    "rotate_key",
    "VaultConfig",
]
