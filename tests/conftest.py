"""Shared fixtures: a small tree and a key."""
import pytest

from folder_vault.keystore import generate_key

EXCEPTIONS = frozenset({"key", "config.json"})


def write_tree(root, files: dict) -> None:
    """Create ``files`` (relative path -> bytes) under ``root``."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


def list_tree(root) -> set:
    """Return every file under ``root`` as a root-relative posix path."""
    return {p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()}


@pytest.fixture
def key():
    return generate_key()


@pytest.fixture
def tree(tmp_path):
    """root/{a.txt, sub/b.txt, key, config.json}"""
    write_tree(tmp_path, {
        "a.txt": b"hi",
        "sub/b.txt": b"bye",
        "key": b"not-a-real-key",
        "config.json": b'{"keyFile": "key", "exceptions": ["key", "config.json"]}',
    })
    return tmp_path
