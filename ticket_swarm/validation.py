"""
Ticket validation and post-execution structural checks.

Execution validation answers three questions about a working directory:
- Did anything change (tracked diff, staged diff or untracked files)?
- Which files changed?
- Do the added lines carry leftover debug logging?

The debug check is a best-effort lint over a fixed marker vocabulary.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from ticket_swarm.models import ExecutionValidation, Ticket

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30
FILE_DIFF_TIMEOUT_SECONDS = 10
EMPTY_DIFF_ISSUE = "No changes detected after execution (empty diff)"

DEBUG_LOG_PATTERN = re.compile(
    r"console\.(log|debug)\(['\"`](?:DEBUG|TODO|FIXME|HACK|XXX)", re.IGNORECASE
)


def _git(clone_dir: str | Path, *args: str, timeout: float = GIT_TIMEOUT_SECONDS) -> str:
    """Run a read-only git command; failures read as empty output."""
    try:
        proc = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=str(clone_dir),
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed in %s: %s", " ".join(args), clone_dir, e)
        return ""
    if proc.returncode != 0:
        logger.debug("git %s exited %d: %s", " ".join(args), proc.returncode, proc.stderr.strip()[:200])
        return ""
    return proc.stdout


def _lines(text: str) -> list[str]:
    return [line for line in text.strip().split("\n") if line]


def added_lines(diff: str) -> list[str]:
    """Lines added by a unified diff, file headers excluded."""
    return [
        line for line in diff.split("\n")
        if line.startswith("+") and not line.startswith("+++")
    ]


def find_debug_logs(file_name: str, diff: str) -> list[str]:
    """Issues for added lines that look like leftover debug logging."""
    return [
        f"Possible debug log left in {file_name}: {line[1:80]}"
        for line in added_lines(diff)
        if DEBUG_LOG_PATTERN.search(line)
    ]


def validate_execution(clone_dir: str | Path) -> ExecutionValidation:
    """
    Structural check of a working directory after execution.

    Returns:
        ExecutionValidation; valid only when something changed and no
        issues were found.
    """
    diff_stat = _git(clone_dir, "diff", "--stat").strip()
    staged_stat = _git(clone_dir, "diff", "--cached", "--stat").strip()
    untracked = _git(clone_dir, "ls-files", "--others", "--exclude-standard").strip()

    if not (diff_stat or staged_stat or untracked):
        logger.warning("Execution validation: %s", EMPTY_DIFF_ISSUE)
        return ExecutionValidation(valid=False, issues=[EMPTY_DIFF_ISSUE])

    changed_files: list[str] = []
    for name in (
        _lines(_git(clone_dir, "diff", "--name-only"))
        + _lines(_git(clone_dir, "diff", "--cached", "--name-only"))
        + _lines(untracked)
    ):
        if name not in changed_files:
            changed_files.append(name)

    if changed_files:
        logger.info("Execution changed %d file(s): %s", len(changed_files), ", ".join(changed_files))

    issues: list[str] = []
    for file_name in changed_files:
        diff = _git(clone_dir, "diff", "--", file_name, timeout=FILE_DIFF_TIMEOUT_SECONDS)
        issues.extend(find_debug_logs(file_name, diff))

    if issues:
        logger.warning("Execution validation found %d issue(s)", len(issues))
    else:
        logger.info("Execution validation passed")

    return ExecutionValidation(valid=not issues, issues=issues, changed_files=changed_files)


def validate_ticket(ticket: Ticket, config: TicketSwarmConfig) -> list[str]:
    """Errors that make a ticket unprocessable; empty when it is fine."""
    errors: list[str] = []

    if not ticket.affected_systems:
        errors.append("No Affected Systems specified")

    if not ticket.target_branch and not ticket.target_branches:
        errors.append("No Fix Version specified")

    supported = ", ".join(config.services)
    for system in ticket.affected_systems:
        if system not in config.services:
            errors.append(f"Unknown service: {system}. Supported: {supported}")

    return errors
