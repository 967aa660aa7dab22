"""
Tests for key rotation.

Tests cover:
- Two-phase rotation (decrypt all, re-encrypt under a new key)
- In-place rotation (no plaintext written to disk)
- Old key no longer decrypting anything
- Failures carrying the new key, and the new IV when only the
  ciphertext was replaced
"""
import io
import os
import errno
from pathlib import Path

import pytest

from folder_vault import rotation
from folder_vault.crypto import CipherMode, decrypt_stream
from folder_vault.exceptions import (
    ConfigurationError,
    DecryptionError,
    FileOperationError,
    RotationError,
)
from folder_vault.executor import decrypt_all, encrypt_all
from folder_vault.rotation import IN_PLACE, TWO_PHASE, rotate_key

from .conftest import EXCEPTIONS, list_tree, write_tree

MODE = CipherMode.CBC
CONTENTS = {"a.txt": b"hi", "sub/b.txt": b"bye", "sub/deeper/c.bin": b"\x00" * 40}


@pytest.fixture
def encrypted_tree(tree, key):
    """Scenario tree with an extra nested file, encrypted under ``key``."""
    write_tree(tree, {"sub/deeper/c.bin": CONTENTS["sub/deeper/c.bin"]})
    encrypt_all(tree, EXCEPTIONS, key, delete_original=True, mode=MODE)
    return tree


def read_plain(root, rel, key):
    """Decrypt ``rel`` in memory with ``key``."""
    iv = (root / f"{rel}.iv").read_text()
    out = io.BytesIO()
    with open(root / f"{rel}.gpg", "rb") as src:
        decrypt_stream(src, out, key, iv, mode=MODE)
    return out.getvalue()


def assert_not_readable(root, rel, key):
    """The old key either fails or yields something else."""
    try:
        assert read_plain(root, rel, key) != CONTENTS[rel]
    except DecryptionError:
        pass


@pytest.mark.parametrize("strategy", [TWO_PHASE, IN_PLACE])
class TestRotateKey:
    """Behaviour shared by both strategies."""

    def test_new_key_decrypts_everything(self, encrypted_tree, key, strategy):
        """Every file decrypts to its original content under the new key."""
        new_key = rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE, strategy=strategy)
        assert new_key != key
        for rel, content in CONTENTS.items():
            assert read_plain(encrypted_tree, rel, new_key) == content

    def test_old_key_no_longer_works(self, encrypted_tree, key, strategy):
        rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE, strategy=strategy)
        for rel in CONTENTS:
            assert_not_readable(encrypted_tree, rel, key)

    def test_tree_layout_is_preserved(self, encrypted_tree, key, strategy):
        """Only ciphertexts, sidecars and excepted files remain."""
        before = list_tree(encrypted_tree)
        rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE, strategy=strategy)
        assert list_tree(encrypted_tree) == before
        assert (encrypted_tree / "key").read_bytes() == b"not-a-real-key"

    def test_sidecars_are_renewed(self, encrypted_tree, key, strategy):
        old_iv = (encrypted_tree / "a.txt.iv").read_text()
        rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE, strategy=strategy)
        assert (encrypted_tree / "a.txt.iv").read_text() != old_iv

    def test_full_cycle_with_decrypt_all(self, encrypted_tree, key, strategy):
        new_key = rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE, strategy=strategy)
        decrypt_all(encrypted_tree, EXCEPTIONS, new_key, delete_cipher=True, mode=MODE)
        for rel, content in CONTENTS.items():
            assert (encrypted_tree / rel).read_bytes() == content


class TestInPlace:
    """Tests specific to the in-place strategy."""

    def test_plaintext_never_written(self, encrypted_tree, key, monkeypatch):
        """No plaintext path is created during the rotation."""
        created = []
        real_open = open

        def tracking_open(path, mode="r", *args, **kwargs):
            if "w" in mode:
                created.append(str(path))
            return real_open(path, mode, *args, **kwargs)

        monkeypatch.setattr("builtins.open", tracking_open)
        rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE, strategy=IN_PLACE)
        monkeypatch.undo()
        for rel in CONTENTS:
            assert str(encrypted_tree / rel) not in created

    def test_failure_returns_new_key(self, tmp_path, key):
        """A failure mid-way reports the key used for rotated files."""
        write_tree(tmp_path, {"a.txt": b"first", "b.txt": b"second"})
        encrypt_all(tmp_path, set(), key, delete_original=True, mode=MODE)
        (tmp_path / "b.txt.gpg").write_bytes(b"truncated")

        with pytest.raises(RotationError) as exc:
            rotate_key(tmp_path, set(), key, mode=MODE, strategy=IN_PLACE)

        new_key = exc.value.new_key
        iv = (tmp_path / "a.txt.iv").read_text()
        out = io.BytesIO()
        with open(tmp_path / "a.txt.gpg", "rb") as src:
            decrypt_stream(src, out, new_key, iv, mode=MODE)
        assert out.getvalue() == b"first"
        assert (tmp_path / "b.txt.gpg").read_bytes() == b"truncated"
        assert not [p for p in list_tree(tmp_path) if p.endswith(".part")]

    def test_sidecar_rename_failure_keeps_new_iv(self, tmp_path, key, monkeypatch):
        """The new IV survives when only the ciphertext could be replaced."""
        write_tree(tmp_path, {"a.txt": b"first"})
        encrypt_all(tmp_path, set(), key, delete_original=True, mode=MODE)
        real_replace = os.replace

        def failing_replace(src, dst):
            if Path(dst).name == "a.txt.iv":
                raise OSError(errno.EIO, "Input/output error")
            real_replace(src, dst)

        monkeypatch.setattr(rotation.os, "replace", failing_replace)
        with pytest.raises(RotationError) as exc:
            rotate_key(tmp_path, set(), key, mode=MODE, strategy=IN_PLACE)
        monkeypatch.undo()

        iv_part = tmp_path / "a.txt.iv.part"
        assert exc.value.path == str(iv_part)
        out = io.BytesIO()
        with open(tmp_path / "a.txt.gpg", "rb") as src:
            decrypt_stream(src, out, exc.value.new_key, iv_part.read_text(), mode=MODE)
        assert out.getvalue() == b"first"

    def test_skips_sidecar_of_restored_file(self, tmp_path, key):
        """A sidecar left next to its restored plaintext is not rotated."""
        write_tree(tmp_path, {"a.txt": b"first", "b.txt": b"second"})
        encrypt_all(tmp_path, set(), key, mode=MODE)
        (tmp_path / "a.txt.gpg").unlink()

        new_key = rotate_key(tmp_path, set(), key, mode=MODE, strategy=IN_PLACE)
        assert (tmp_path / "a.txt").read_bytes() == b"first"
        iv = (tmp_path / "b.txt.iv").read_text()
        out = io.BytesIO()
        with open(tmp_path / "b.txt.gpg", "rb") as src:
            decrypt_stream(src, out, new_key, iv, mode=MODE)
        assert out.getvalue() == b"second"


class TestTwoPhase:
    """Tests specific to the two-phase strategy."""

    def test_encrypts_plaintext_left_in_tree(self, encrypted_tree, key):
        """Plaintext files are picked up by the re-encryption phase."""
        (encrypted_tree / "new.txt").write_bytes(b"added later")
        new_key = rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE)
        assert not (encrypted_tree / "new.txt").exists()
        iv = (encrypted_tree / "new.txt.iv").read_text()
        out = io.BytesIO()
        with open(encrypted_tree / "new.txt.gpg", "rb") as src:
            decrypt_stream(src, out, new_key, iv, mode=MODE)
        assert out.getvalue() == b"added later"

    def test_phase_two_failure_carries_new_key(self, encrypted_tree, key, monkeypatch):
        def failing_encrypt_all(*args, **kwargs):
            raise FileOperationError("disk full", path="a.txt.gpg")

        monkeypatch.setattr(rotation, "encrypt_all", failing_encrypt_all)
        with pytest.raises(RotationError) as exc:
            rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE)
        assert exc.value.new_key != key
        # phase one already restored the plaintext
        assert (encrypted_tree / "a.txt").read_bytes() == b"hi"


def test_unknown_strategy(tree, key):
    with pytest.raises(ConfigurationError):
        rotate_key(tree, EXCEPTIONS, key, strategy="shuffle")


def test_new_keys_are_fresh(encrypted_tree, key):
    first = rotate_key(encrypted_tree, EXCEPTIONS, key, mode=MODE)
    second = rotate_key(encrypted_tree, EXCEPTIONS, first, mode=MODE)
    assert len({key, first, second}) == 3
