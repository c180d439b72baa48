"""
Storage layer for the CA store.

Responsibilities:
  - Create directories with owner-only permissions (0700).
  - Write PEM artifacts so they are never group/world readable, not even
    briefly: data goes to a 0600 temp file in the target directory which
    then replaces the destination.
  - Read artifacts, mapping a missing file to NotFound and other OS errors
    to StorageFailure.

This module knows nothing about keys or certificates; callers pass bytes.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from hancock.common.errors import NotFound, StorageFailure

log = logging.getLogger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600

PathLike = Union[str, Path]


def ensure_writable_dir(path: PathLike) -> Path:
    """
    Create `path` and any missing parents, then restrict it to 0700.

    Every directory created along the way is 0700 as well.

    Returns:
        The directory as a Path.

    Raises:
        StorageFailure on any OS error, or when `path` is not a directory.
    """
    directory = Path(path)

    missing = []
    level = directory
    while not level.exists() and level.parent != level:
        missing.append(level)
        level = level.parent

    try:
        for level in reversed(missing):
            level.mkdir(mode=DIR_MODE, exist_ok=True)
            os.chmod(level, DIR_MODE)
        if not directory.is_dir():
            raise StorageFailure(f"cannot prepare directory {directory}: not a directory")
        os.chmod(directory, DIR_MODE)
    except OSError as exc:
        raise StorageFailure(f"cannot prepare directory {directory}: {exc}") from exc
    return directory


def write_private(path: PathLike, data: bytes) -> None:
    """
    Write `data` to `path` with mode 0600, replacing any existing file.

    Raises:
        StorageFailure on any OS error. On failure the destination is
        left untouched.
    """
    target = Path(path)
    directory = ensure_writable_dir(target.parent)

    try:
        # mkstemp creates the file with mode 0600
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{target.name}.", suffix=".tmp")
    except OSError as exc:
        raise StorageFailure(f"cannot create {target}: {exc}") from exc

    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), FILE_MODE)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except OSError as exc:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise StorageFailure(f"cannot write {target}: {exc}") from exc

    log.debug("wrote %s (%d bytes)", target, len(data))


def read_bytes(path: PathLike, what: str = "file") -> bytes:
    """
    Read a whole file.

    Raises:
        NotFound if the file does not exist.
        StorageFailure on any other OS error.
    """
    p = Path(path)
    try:
        return p.read_bytes()
    except FileNotFoundError as exc:
        raise NotFound(str(p), what) from exc
    except OSError as exc:
        raise StorageFailure(f"cannot read {p}: {exc}") from exc
