"""
File system utilities for Ticket Swarm.

This module provides safe file operations including:
- Atomic writes (write to temp file, then rename) for checkpoints
- Directory creation and removal
- Working-directory duplication for parallel write runs
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path


class FileSystemError(Exception):
    """Raised when a file system operation fails."""
    pass


def ensure_dir(path: str | Path) -> Path:
    """
    Create a directory if it does not exist (like mkdir -p).

    Raises:
        FileSystemError: If directory creation fails.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(f"Failed to create directory {path}: {e}")


def safe_write(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    The content goes to a temporary sibling file which is then renamed over
    the target, so readers see either the old file or the new one.

    Raises:
        FileSystemError: If write operation fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        # Same directory keeps the rename on one filesystem
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def file_exists(path: str | Path) -> bool:
    """True if path exists and is a regular file."""
    return Path(path).is_file()


def dir_exists(path: str | Path) -> bool:
    """True if path exists and is a directory."""
    return Path(path).is_dir()


def read_file(path: str | Path, encoding: str = "utf-8") -> str:
    """
    Read a file's contents.

    Raises:
        FileSystemError: If the file is missing or cannot be decoded.
    """
    path = Path(path)

    if not path.is_file():
        raise FileSystemError(f"File not found: {path}")

    try:
        return path.read_text(encoding=encoding)
    except UnicodeDecodeError as e:
        raise FileSystemError(f"Failed to decode file {path} with encoding {encoding}: {e}")
    except OSError as e:
        raise FileSystemError(f"Failed to read file {path}: {e}")


def list_files(directory: str | Path, pattern: str = "*") -> list[Path]:
    """
    List files matching a glob pattern, sorted by name.

    Returns an empty list when the directory does not exist.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.glob(pattern) if p.is_file())


def remove_file(path: str | Path) -> bool:
    """
    Remove a file if it exists.

    Returns:
        bool: True if file was removed, False if it didn't exist.

    Raises:
        FileSystemError: If removal fails.
    """
    path = Path(path)

    if not path.exists():
        return False

    try:
        path.unlink()
        return True
    except OSError as e:
        raise FileSystemError(f"Failed to remove file {path}: {e}")


def remove_dir(path: str | Path) -> bool:
    """
    Remove a directory tree if it exists.

    Returns:
        bool: True if the directory was removed, False if it didn't exist.

    Raises:
        FileSystemError: If removal fails.
    """
    path = Path(path)

    if not path.exists():
        return False

    if not path.is_dir():
        raise FileSystemError(f"Not a directory: {path}")

    try:
        shutil.rmtree(path)
        return True
    except OSError as e:
        raise FileSystemError(f"Failed to remove directory {path}: {e}")


def copy_tree(src: str | Path, dst: str | Path) -> Path:
    """
    Recursively copy a directory, replacing any stale copy at dst.

    Symlinks are copied as links.

    Raises:
        FileSystemError: If the source is missing or the copy fails.
    """
    src = Path(src)
    dst = Path(dst)

    if not src.is_dir():
        raise FileSystemError(f"Source directory not found: {src}")

    try:
        if dst.exists():
            shutil.rmtree(dst)
        shutil.copytree(src, dst, symlinks=True)
        return dst
    except (OSError, shutil.Error) as e:
        raise FileSystemError(f"Failed to copy {src} to {dst}: {e}")
