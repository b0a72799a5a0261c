"""Utility modules for Ticket Swarm."""

from ticket_swarm.utils.fs import (
    FileSystemError,
    copy_tree,
    dir_exists,
    ensure_dir,
    file_exists,
    list_files,
    read_file,
    remove_dir,
    remove_file,
    safe_write,
)

__all__ = [
    "FileSystemError",
    "copy_tree",
    "dir_exists",
    "ensure_dir",
    "file_exists",
    "list_files",
    "read_file",
    "remove_dir",
    "remove_file",
    "safe_write",
]
