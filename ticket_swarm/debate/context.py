"""
Prompt context built from the ticket and the cloned repository.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from ticket_swarm.models import Ticket

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description provided"
INSTRUCTION_FILES = ("CLAUDE.md", "CODEX.md", "codex.md")
INSTRUCTION_FILE_LIMIT = 3000
FILE_TREE_DEPTH = 2

IGNORE_DIRS = frozenset({
    "node_modules", ".git", ".tmp", ".pipeline-state", "dist", "build",
    "coverage", ".nyc_output", ".cache", "__pycache__", ".next",
    ".venv", "venv", ".tox", ".pytest_cache",
})


def build_ticket_context(ticket: Ticket) -> str:
    """Markdown summary of the ticket for debate agents."""
    lines = [
        f"# Ticket: {ticket.key}",
        "",
        "## Summary",
        ticket.summary,
        "",
        "## Description",
        ticket.description or NO_DESCRIPTION,
        "",
    ]

    if ticket.comments:
        lines.extend(["## Comments", ""])
        for i, comment in enumerate(ticket.comments, start=1):
            lines.append(f"### Comment {i} by {comment.author}")
            lines.append(comment.text)
            lines.append("")

    if ticket.affected_systems:
        lines.extend(["## Affected Systems", ", ".join(ticket.affected_systems), ""])

    if ticket.target_branch:
        lines.extend(["## Target Branch", ticket.target_branch, ""])

    return "\n".join(lines)


def _read_if_exists(path: Path) -> Optional[str]:
    try:
        if path.is_file():
            return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        pass
    return None


def build_file_tree(directory: str | Path, depth: int = FILE_TREE_DEPTH, prefix: str = "") -> str:
    """
    Render a directory tree, directories first, hidden and vendor dirs skipped.
    """
    if depth <= 0:
        return ""

    try:
        entries = list(os.scandir(directory))
    except OSError:
        return ""

    visible = [
        e for e in entries
        if e.name not in IGNORE_DIRS and not e.name.startswith(".")
    ]
    visible.sort(key=lambda e: (not e.is_dir(), e.name.lower()))

    lines: list[str] = []
    for entry in visible:
        if entry.is_dir():
            lines.append(f"{prefix}{entry.name}/")
            subtree = build_file_tree(entry.path, depth - 1, prefix + "  ")
            if subtree:
                lines.append(subtree)
        else:
            lines.append(f"{prefix}{entry.name}")
    return "\n".join(lines)


def _package_json_section(clone_dir: Path) -> list[str]:
    content = _read_if_exists(clone_dir / "package.json")
    if content is None:
        return []
    try:
        pkg = json.loads(content)
    except json.JSONDecodeError:
        logger.debug("Ignoring invalid package.json in %s", clone_dir)
        return []
    if not isinstance(pkg, dict):
        return []

    lines = ["## package.json", ""]
    if pkg.get("scripts"):
        lines.extend(["### Scripts", "```json", json.dumps(pkg["scripts"], indent=2), "```", ""])
    if pkg.get("dependencies"):
        lines.extend(["### Dependencies", ", ".join(pkg["dependencies"]), ""])
    if pkg.get("devDependencies"):
        lines.extend(["### Dev Dependencies", ", ".join(pkg["devDependencies"]), ""])
    return lines


def build_codebase_context(clone_dir: str | Path) -> str:
    """
    Markdown overview of the cloned repository.

    Includes agent instruction files (truncated), a two-level file tree and
    package manifest highlights.
    """
    clone_dir = Path(clone_dir)
    lines: list[str] = []

    for name in INSTRUCTION_FILES:
        content = _read_if_exists(clone_dir / name)
        if content:
            lines.extend([
                f"## {name} (Service Rules)",
                "```",
                content[:INSTRUCTION_FILE_LIMIT],
                "```",
                "",
            ])

    lines.extend(["## File Tree", "```", build_file_tree(clone_dir), "```", ""])
    lines.extend(_package_json_section(clone_dir))

    if (clone_dir / "pyproject.toml").is_file():
        lines.extend(["## pyproject.toml", "Python project (pyproject.toml present)", ""])

    return "\n".join(lines)


def build_base_context(ticket_context: str, codebase_context: str) -> str:
    """Shared preamble of every debate prompt."""
    return f"{ticket_context}\n\n## Codebase Context\n\n{codebase_context}"
