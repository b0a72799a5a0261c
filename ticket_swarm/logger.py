"""
Structured JSONL logging for Ticket Swarm.

This module provides:
- JSONL event logging for debugging and audit trails
- Log files organized by ticket key and date
- Log levels (debug, info, warn, error)
- Context manager for run-scoped logging
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def utc_timestamp() -> str:
    """Current UTC time as an ISO string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class RunLogger:
    """
    JSONL event logger for one ticket.

    Writes structured log entries to <log_dir>/<ticket>-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - ticket_key: Ticket identifier
    - run_id: Present inside run_context()
    - data: Additional event data (dict)
    """

    def __init__(self, ticket_key: str, log_dir: str | Path = "./logs") -> None:
        self.ticket_key = ticket_key
        self.log_dir = Path(log_dir)
        self._current_run_id: Optional[str] = None

    @property
    def run_id(self) -> Optional[str]:
        return self._current_run_id

    def _get_log_path(self, date: Optional[str] = None) -> Path:
        """Get the log file path for a date (today by default)."""
        if date is None:
            date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / f"{self.ticket_key}-{date}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a log entry to the JSONL file."""
        log_path = self._get_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "step_start", "debate_round", "error").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry = {
            "timestamp": utc_timestamp(),
            "level": level,
            "event_type": event_type,
            "ticket_key": self.ticket_key,
            "data": data or {},
        }

        if self._current_run_id:
            entry["run_id"] = self._current_run_id

        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.ERROR)

    @contextmanager
    def run_context(self, run_id: str) -> Iterator[RunLogger]:
        """
        Context manager for run-scoped logging.

        All logs within this context will include the run_id.

        Example:
            with logger.run_context("run_001") as log:
                log.info("step_complete", {"step": "EXECUTE"})
        """
        old_run_id = self._current_run_id
        self._current_run_id = run_id
        self.info("run_start", {"run_id": run_id})
        try:
            yield self
        finally:
            self.info("run_end", {"run_id": run_id})
            self._current_run_id = old_run_id

    def read_logs(
        self,
        date: Optional[str] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        run_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read log entries with optional filtering.

        Args:
            date: Date string (YYYY-MM-DD) to read. If None, reads today's logs.
            level: Filter by log level.
            event_type: Filter by event type.
            run_id: Filter by run ID.
            limit: Maximum number of entries to return.

        Returns:
            List of log entries matching the filters.
        """
        log_path = self._get_log_path(date)
        if not log_path.exists():
            return []

        entries = []
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if level and entry.get("level") != level:
                    continue
                if event_type and entry.get("event_type") != event_type:
                    continue
                if run_id and entry.get("run_id") != run_id:
                    continue

                entries.append(entry)

                if limit and len(entries) >= limit:
                    break

        return entries

    def get_log_files(self) -> list[Path]:
        """Get all JSONL files for this ticket, newest first."""
        if not self.log_dir.exists():
            return []
        files = list(self.log_dir.glob(f"{self.ticket_key}-*.jsonl"))
        files.sort(reverse=True)
        return files
