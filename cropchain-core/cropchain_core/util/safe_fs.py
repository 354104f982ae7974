"""Safe filesystem utilities: path traversal guard and atomic write-then-verify.

Used by the filesystem content store so a content id can never address a file
outside the store root, and a reader never sees a half-written object.
"""
import hashlib
import os
import tempfile
from pathlib import Path


class SafePathError(ValueError):
    """Raised when a resolved path escapes the allowed base directory or traverses a symlink."""


class AtomicWriteError(OSError):
    """Raised when atomic_write_verified fails."""


def resolve_safe_path(base_dir: Path, untrusted: str) -> Path:
    """Resolve *untrusted* relative path against *base_dir*.

    Rules (strict mode):
    - The resolved path must be inside *base_dir* (no ``../`` escapes).
    - No component of the path from *base_dir* onwards may be a symlink.

    Raises
    ------
    SafePathError
        If the path escapes *base_dir* or any component is a symlink.
    """
    base = Path(base_dir).resolve()
    unresolved = base / untrusted

    # Symlinks must be checked before resolve() erases them from the path.
    _check_no_symlinks_unresolved(base, unresolved)

    try:
        candidate = unresolved.resolve()
    except (OSError, RuntimeError) as exc:
        raise SafePathError(f"Cannot resolve path: {untrusted!r}") from exc

    try:
        candidate.relative_to(base)
    except ValueError:
        raise SafePathError(f"Path {untrusted!r} escapes base directory {base}") from None

    return candidate


def _check_no_symlinks_unresolved(base: Path, joined: Path) -> None:
    to_check: list[Path] = []
    current = joined
    while current != base and current != current.parent:
        to_check.append(current)
        current = current.parent

    for p in reversed(to_check):
        if p.is_symlink():
            raise SafePathError(f"Symlink detected in path: {p}; symlinks are not permitted")


def atomic_write_verified(data: bytes, final_path: Path) -> Path:
    """Write *data* to *final_path* atomically and verify the written digest.

    Steps:
    1. Compute SHA-256 of *data*.
    2. Write to a temporary file in the destination directory and fsync.
    3. Re-read the temp file and verify its SHA-256.
    4. Atomically rename temp -> final path.

    Raises
    ------
    AtomicWriteError
        If verification fails or any OS error occurs.
    """
    expected_sha256 = hashlib.sha256(data).hexdigest()
    dst_dir = final_path.parent

    try:
        dst_dir.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path_str = tempfile.mkstemp(dir=dst_dir, prefix=f"_tmp_{final_path.name}_")
    except OSError as exc:
        raise AtomicWriteError(f"Cannot create temp file in {dst_dir}: {exc}") from exc
    tmp_path = Path(tmp_path_str)
    try:
        with os.fdopen(tmp_fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        actual_sha256 = hashlib.sha256(tmp_path.read_bytes()).hexdigest()
        if actual_sha256 != expected_sha256:
            raise AtomicWriteError(
                f"SHA-256 mismatch after write: expected {expected_sha256}, got {actual_sha256}"
            )

        # os.replace is atomic on POSIX (same filesystem).
        os.replace(tmp_path, final_path)

    except AtomicWriteError:
        tmp_path.unlink(missing_ok=True)
        raise
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise AtomicWriteError(f"Atomic write failed: {exc}") from exc

    return final_path
