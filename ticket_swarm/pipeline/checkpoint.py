"""
Checkpoint persistence for pipeline runs.

This module handles:
- Saving the per-ticket state record to <state_dir>/<ticket>/state.json
- Persisting the cheatsheet separately to <state_dir>/<ticket>/cheatsheet.md
- Graceful handling of missing or corrupted state files
- Locating persisted debate round outputs

Every save replaces the ticket's state record wholesale. Clearing removes
only the state record; the cheatsheet and debate rounds survive.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

from ticket_swarm.debate.engine import ROUNDS_DIR
from ticket_swarm.errors import CheckpointError
from ticket_swarm.logger import utc_timestamp
from ticket_swarm.models import model_to_json
from ticket_swarm.pipeline.steps import Step
from ticket_swarm.utils.fs import (
    FileSystemError,
    file_exists,
    list_files,
    read_file,
    remove_file,
    safe_write,
)

if TYPE_CHECKING:
    from ticket_swarm.logger import RunLogger

STATE_FILE = "state.json"
CHEATSHEET_FILE = "cheatsheet.md"


@dataclass
class Checkpoint:
    """
    Durable record of a ticket's pipeline progress.

    The cheatsheet text lives in its own file; the state record only keeps
    its path.
    """
    ticket_key: str
    current_step: Step
    timestamp: str = ""
    ticket_data: Optional[dict[str, Any]] = None
    clone_dir: Optional[str] = None
    feature_branch: Optional[str] = None
    service_name: Optional[str] = None
    branch_name: Optional[str] = None
    cheatsheet: Optional[str] = None           # Loaded from cheatsheet.md
    cheatsheet_path: Optional[str] = None
    execution_output: Optional[str] = None     # Truncated executor output
    pr_data: Optional[dict[str, Any]] = None
    all_prs: list[dict[str, Any]] = field(default_factory=list)
    all_failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization, without the cheatsheet text."""
        data = asdict(self)
        data["current_step"] = self.current_step.name
        data.pop("cheatsheet")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        """Create from dictionary."""
        data = data.copy()
        data["current_step"] = Step.from_value(data["current_step"])
        data["all_prs"] = list(data.get("all_prs") or [])
        data["all_failures"] = list(data.get("all_failures") or [])
        return cls(**data)


CHECKPOINT_FIELDS = frozenset(f.name for f in dataclass_fields(Checkpoint))


class CheckpointStore:
    """
    Per-ticket checkpoint storage.

    Writes are atomic whole-file replacements. Runs for one ticket are never
    concurrent, so the last write wins.
    """

    def __init__(
        self,
        state_dir: Union[str, Path],
        logger: Optional[RunLogger] = None,
    ) -> None:
        self._state_dir = Path(state_dir)
        self._logger = logger

    def _log(
        self,
        event_type: str,
        data: Optional[dict] = None,
        level: str = "info"
    ) -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def checkpoint_dir(self, ticket_key: str) -> Path:
        """Directory holding all persisted artifacts of a ticket."""
        return self._state_dir / ticket_key

    def _state_path(self, ticket_key: str) -> Path:
        return self.checkpoint_dir(ticket_key) / STATE_FILE

    def cheatsheet_path(self, ticket_key: str) -> Path:
        return self.checkpoint_dir(ticket_key) / CHEATSHEET_FILE

    def save(
        self,
        ticket_key: str,
        step: Union[Step, str, int],
        data: Optional[dict[str, Any]] = None,
    ) -> Checkpoint:
        """
        Replace the ticket's checkpoint.

        Args:
            ticket_key: Ticket identifier.
            step: Step just completed.
            data: Checkpoint fields to record (ticket_data, clone_dir, ...).

        Returns:
            The saved Checkpoint.

        Raises:
            CheckpointError: If a field is unknown or the state or cheatsheet
                cannot be written.
        """
        fields = dict(data or {})
        fields.pop("ticket_key", None)
        fields.pop("current_step", None)
        fields.pop("timestamp", None)

        unknown = sorted(set(fields) - CHECKPOINT_FIELDS)
        if unknown:
            raise CheckpointError(
                f"Unknown checkpoint field(s) for {ticket_key}: {', '.join(unknown)}"
            )

        checkpoint = Checkpoint(
            ticket_key=ticket_key,
            current_step=Step.from_value(step),
            timestamp=utc_timestamp(),
            **fields,
        )

        try:
            if checkpoint.cheatsheet:
                cheatsheet_path = self.cheatsheet_path(ticket_key)
                safe_write(cheatsheet_path, checkpoint.cheatsheet)
                checkpoint.cheatsheet_path = str(cheatsheet_path)

            safe_write(
                self._state_path(ticket_key),
                model_to_json(checkpoint.to_dict(), indent=2),
            )
        except FileSystemError as e:
            self._log("checkpoint_save_error", {
                "ticket_key": ticket_key,
                "error": str(e),
            }, level="error")
            raise CheckpointError(f"Failed to save checkpoint for {ticket_key}: {e}")

        self._log("checkpoint_saved", {
            "ticket_key": ticket_key,
            "step": checkpoint.current_step.name,
        }, level="debug")
        return checkpoint

    def load(self, ticket_key: str) -> Optional[Checkpoint]:
        """
        Load the ticket's checkpoint with its cheatsheet attached.

        Returns:
            Checkpoint, or None if none exists or the record is corrupt.
        """
        state_path = self._state_path(ticket_key)

        if not file_exists(state_path):
            self._log("checkpoint_load_miss", {"ticket_key": ticket_key}, level="debug")
            return None

        try:
            checkpoint = Checkpoint.from_dict(json.loads(read_file(state_path)))
        except json.JSONDecodeError as e:
            self._log("checkpoint_corrupted", {
                "ticket_key": ticket_key,
                "error": str(e),
                "path": str(state_path),
            }, level="error")
            return None
        except (KeyError, ValueError, TypeError) as e:
            self._log("checkpoint_invalid", {
                "ticket_key": ticket_key,
                "error": str(e),
                "path": str(state_path),
            }, level="error")
            return None
        except FileSystemError as e:
            self._log("checkpoint_read_error", {
                "ticket_key": ticket_key,
                "error": str(e),
            }, level="error")
            return None

        checkpoint.cheatsheet = self.load_cheatsheet(ticket_key)
        self._log("checkpoint_loaded", {
            "ticket_key": ticket_key,
            "step": checkpoint.current_step.name,
            "timestamp": checkpoint.timestamp,
        })
        return checkpoint

    def load_cheatsheet(self, ticket_key: str) -> Optional[str]:
        """Persisted cheatsheet text, byte-for-byte, or None."""
        path = self.cheatsheet_path(ticket_key)
        if not file_exists(path):
            return None
        try:
            return path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self._log("cheatsheet_read_error", {
                "ticket_key": ticket_key,
                "error": str(e),
            }, level="error")
            return None

    def clear(self, ticket_key: str) -> bool:
        """
        Remove the state record only.

        Returns:
            True if a state record was removed.
        """
        try:
            removed = remove_file(self._state_path(ticket_key))
        except FileSystemError as e:
            raise CheckpointError(f"Failed to clear checkpoint for {ticket_key}: {e}")
        if removed:
            self._log("checkpoint_cleared", {"ticket_key": ticket_key})
        return removed

    def list_round_files(self, ticket_key: str) -> list[Path]:
        """Persisted debate round outputs, sorted by name."""
        return list_files(self.checkpoint_dir(ticket_key) / ROUNDS_DIR, "round-*.md")
