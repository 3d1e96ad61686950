"""
lumenflow-core — filesystem utilities

File: src/lumenflow_core/utils/fs.py

Purpose
- Atomic whole-file rewrites and durable line appends.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Appends never rewrite prior bytes.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "append_line",
    "append_lines",
    "atomic_write",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding, newline="\n") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def append_line(path: PathLike, line: str, *, encoding: str = "utf-8") -> None:
    """Append one newline-terminated line with a single open-write-fsync-close."""

    append_lines(path, [line], encoding=encoding)


def append_lines(path: PathLike, lines: list[str], *, encoding: str = "utf-8") -> None:
    """Append ``lines`` as one write; each must be free of newline characters."""

    for line in lines:
        if "\n" in line or "\r" in line:
            raise ValueError("appended line must not contain newline characters")

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding=encoding, newline="\n") as file_handle:
        file_handle.write("".join(f"{line}\n" for line in lines))
        file_handle.flush()
        os.fsync(file_handle.fileno())


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
