"""
Folder Vault Configuration — JSON settings file loading and validation.

The configuration file is a JSON document::

    {
        "workingDirectory": "/srv/data",   (optional)
        "keyFile": "key",
        "exceptions": ["key", "config.json"],
        "cipherMode": "cbc"                (optional, "cbc" or "ecb")
    }

``keyFile`` is resolved against the working directory and ``exceptions``
holds root-relative paths of files and directories to leave untouched.

Security Note:
    The key file lives inside the tree by default; keep it in
    ``exceptions`` or it will be encrypted with itself.
"""
import os
import logging
from pathlib import Path
from typing import Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .crypto import CipherMode
from .exceptions import ConfigurationError

logger = logging.getLogger("folder_vault")

CONFIG_FILE = "config.json"
DEFAULT_CONFIG = {"keyFile": "key", "exceptions": ["key", "config.json"]}


class VaultConfig(BaseModel):
    """Validated Folder Vault configuration."""

    working_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    key_file: str = Field(alias="keyFile")
    exceptions: set[str]
    cipher_mode: CipherMode = Field(default=CipherMode.CBC, alias="cipherMode")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("key_file")
    @classmethod
    def validate_key_file(cls, v: str) -> str:
        """Key file name cannot be empty."""
        if not v.strip():
            raise ValueError("keyFile cannot be empty")
        return v

    @field_validator("exceptions")
    @classmethod
    def normalize_exceptions(cls, v: set[str]) -> set[str]:
        """Store exceptions as root-relative paths with '/' separators."""
        return {item.replace("\\", "/").strip("/") for item in v if item.strip("/")}

    @field_validator("cipher_mode", mode="before")
    @classmethod
    def lower_cipher_mode(cls, v):
        """Accept any case for the cipher mode name."""
        if isinstance(v, str):
            return v.lower()
        return v

    def key_path(self, working_dir: Union[str, os.PathLike]) -> Path:
        """Return the key file location for ``working_dir``."""
        return Path(working_dir) / self.key_file

    @classmethod
    def load(cls, path: Union[str, os.PathLike]) -> "VaultConfig":
        """Parse and validate the configuration file at ``path``.

        Raises:
            ConfigurationError: If the file cannot be read, is not valid JSON
                or does not match the schema.
        """
        path = Path(path)
        try:
            data = orjson.loads(path.read_bytes())
        except OSError as err:
            raise ConfigurationError(
                f"Cannot read configuration: {err.strerror or err}", path=path,
            ) from err
        except orjson.JSONDecodeError as err:
            raise ConfigurationError(
                f"Invalid JSON in configuration: {err}", path=path,
            ) from err
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a JSON object", path=path)
        try:
            return cls.model_validate(data)
        except ValidationError as err:
            raise ConfigurationError(
                f"Invalid configuration: {err}", path=path,
            ) from err

    @classmethod
    def load_or_create(cls, path: Union[str, os.PathLike]) -> "VaultConfig":
        """Load the configuration, writing the default one first if absent.

        Returns:
            Populated VaultConfig instance.
        """
        path = Path(path)
        if not path.exists():
            logger.info("Configuration %s not found, creating default", path)
            path.write_bytes(orjson.dumps(DEFAULT_CONFIG))
        return cls.load(path)
