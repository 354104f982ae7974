"""Tests for cropchain_core.util.safe_fs: traversal guard and atomic writes."""
import hashlib
import os
from pathlib import Path
from unittest import mock

import pytest

from cropchain_core.util.safe_fs import (
    AtomicWriteError,
    SafePathError,
    atomic_write_verified,
    resolve_safe_path,
)


# ---------------------------------------------------------------------------
# resolve_safe_path
# ---------------------------------------------------------------------------


def test_sharded_content_path_resolves(tmp_path: Path) -> None:
    base = tmp_path.resolve()
    assert resolve_safe_path(base, "ab/abcd.json") == base / "ab" / "abcd.json"


@pytest.mark.parametrize("untrusted", ["../outside.json", "/etc/passwd", "ab/../../../x"])
def test_escapes_rejected(tmp_path: Path, untrusted: str) -> None:
    with pytest.raises(SafePathError):
        resolve_safe_path(tmp_path, untrusted)


def test_symlinked_shard_rejected(tmp_path: Path) -> None:
    """A shard directory replaced by a symlink must not be followed."""
    real = tmp_path / "elsewhere"
    real.mkdir()
    (tmp_path / "ab").symlink_to(real)
    with pytest.raises(SafePathError):
        resolve_safe_path(tmp_path, "ab/abcd.json")


# ---------------------------------------------------------------------------
# atomic_write_verified
# ---------------------------------------------------------------------------


def test_atomic_write_creates_parent_and_file(tmp_path: Path) -> None:
    target = tmp_path / "ab" / "abcd.json"
    data = b'{"certificate_version":"1.0.0"}'
    assert atomic_write_verified(data, target) == target
    assert hashlib.sha256(target.read_bytes()).hexdigest() == hashlib.sha256(data).hexdigest()


def test_atomic_write_replaces_existing(tmp_path: Path) -> None:
    target = tmp_path / "doc.json"
    target.write_bytes(b"old")
    atomic_write_verified(b"new", target)
    assert target.read_bytes() == b"new"


def test_atomic_write_leaves_no_temp_files_on_failure(tmp_path: Path) -> None:
    target = tmp_path / "doc.json"
    with mock.patch("cropchain_core.util.safe_fs.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(AtomicWriteError):
            atomic_write_verified(b"data", target)
    assert not target.exists()
    assert os.listdir(tmp_path) == []
