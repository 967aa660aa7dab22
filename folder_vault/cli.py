"""
Folder Vault command line.

    folder-vault -w /srv/data -a EncryptAll
    folder-vault                       (interactive menu)

Exit status is 0 on success and 1 on any error.
"""
import os
import sys
import logging
import argparse
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import CONFIG_FILE, VaultConfig
from .exceptions import FolderVaultError, RotationError
from .executor import decrypt_all, encrypt_all
from .keystore import load_or_generate_key, save_key
from .rotation import STRATEGIES, TWO_PHASE, rotate_key
from .version import __version__


class Action(str, Enum):
    ENCRYPT_ALL = "EncryptAll"
    DECRYPT_ALL = "DecryptAll"
    ROTATE_KEY = "RotateKey"
    EXIT = "Exit"


MENU = (
    (Action.ENCRYPT_ALL, "Encrypt all files"),
    (Action.DECRYPT_ALL, "Decrypt all files"),
    (Action.ROTATE_KEY, "Rotate key"),
    (Action.EXIT, "Exit"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="folder-vault",
        description="Encrypt, decrypt or rotate the key of a directory tree.",
    )
    parser.add_argument(
        "-w", "--workingdir", help="the directory to work from",
    )
    parser.add_argument(
        "-a", "--action", choices=[a.value for a in Action],
        help="the action to perform",
    )
    parser.add_argument(
        "-f", "--fail-if-key-not-found", action="store_true",
        help="exit instead of generating a key when the key file is missing",
    )
    parser.add_argument(
        "-c", "--config", help=f"path to the configuration file ({CONFIG_FILE})",
    )
    parser.add_argument(
        "--strategy", choices=STRATEGIES, default=TWO_PHASE,
        help="key rotation strategy",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    return parser


def _prompt_path(prompt: str, default: Path, input_fn: Callable[[str], str]) -> Path:
    try:
        answer = input_fn(f"{prompt} ({default}): ").strip()
    except EOFError:
        return default
    return Path(answer) if answer else default


RESCUE_SUFFIX = ".new"


class Session:
    """Loaded configuration and key for one invocation."""

    def __init__(self, working_dir: Path, config: VaultConfig, key: str):
        self.working_dir = working_dir
        self.config = config
        self.key = key

    @property
    def key_path(self) -> Path:
        return self.config.key_path(self.working_dir)

    @property
    def rescue_key_path(self) -> Path:
        """Where the new key is saved when a rotation fails."""
        return self.key_path.with_name(self.key_path.name + RESCUE_SUFFIX)

    @property
    def exceptions(self) -> set[str]:
        """Configured exceptions plus the rescue key, which is never encrypted."""
        rescue = self.config.key_file.replace("\\", "/").strip("/") + RESCUE_SUFFIX
        return self.config.exceptions | {rescue}

    def run(self, action: Action, strategy: str = TWO_PHASE) -> None:
        exceptions = self.exceptions
        mode = self.config.cipher_mode
        if action is Action.ENCRYPT_ALL:
            encrypt_all(
                self.working_dir, exceptions, self.key,
                delete_original=True, mode=mode,
            )
            print("All files have been encrypted.\n")
        elif action is Action.DECRYPT_ALL:
            decrypt_all(
                self.working_dir, exceptions, self.key,
                delete_cipher=True, mode=mode,
            )
            print("All files have been decrypted.\n")
        elif action is Action.ROTATE_KEY:
            try:
                new_key = rotate_key(
                    self.working_dir, exceptions, self.key,
                    mode=mode, strategy=strategy,
                )
            except RotationError as err:
                rescue = self.rescue_key_path
                save_key(rescue, err.new_key)
                print(
                    f"Rotation failed; the new key was saved to {rescue}. "
                    "Files may be encrypted under either key.",
                    file=sys.stderr,
                )
                raise
            save_key(self.key_path, new_key)
            self.key = new_key
            print("Key has been rotated and used to encrypt all files.\n")


def main(
    argv: Optional[Sequence[str]] = None,
    input_fn: Callable[[str], str] = input,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"Version {__version__}")
    interactive = args.action is None

    working_dir = Path(args.workingdir) if args.workingdir else Path(os.getcwd())
    config_file = Path(args.config) if args.config else working_dir / CONFIG_FILE
    if not config_file.exists() and interactive:
        config_file = _prompt_path(
            "Please enter the path to the config file", config_file, input_fn,
        )
    if not config_file.exists():
        print(f"Config file at {config_file} could not be found. Creating default config file.")

    try:
        config = VaultConfig.load_or_create(config_file)
    except FolderVaultError as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1

    if not args.workingdir:
        if config.working_directory:
            working_dir = Path(config.working_directory)
        elif interactive:
            working_dir = _prompt_path(
                "Please enter the path to the working directory",
                working_dir, input_fn,
            )

    key_path = config.key_path(working_dir)
    if not key_path.exists():
        if args.fail_if_key_not_found:
            print(f"Key file at {key_path} could not be found. Exiting.")
            return 1
        print(f"Key file at {key_path} could not be found. Generating a new key file.")
    session = Session(working_dir, config, load_or_generate_key(key_path))

    try:
        if not interactive:
            session.run(Action(args.action), strategy=args.strategy)
            return 0
        while True:
            print("=" * 55)
            for i, (_, label) in enumerate(MENU, start=1):
                print(f"{i}. {label}")
            try:
                answer = input_fn("Please enter a value corresponding to an option above: ")
            except EOFError:
                return 0
            try:
                selection = int(answer)
            except ValueError:
                selection = 0
            if not 1 <= selection <= len(MENU):
                print("Invalid input. Please try again.\n")
                continue
            action = MENU[selection - 1][0]
            if action is Action.EXIT:
                print("Exiting...")
                return 0
            session.run(action, strategy=args.strategy)
    except FolderVaultError as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
