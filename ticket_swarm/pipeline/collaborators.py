"""
Interfaces to the systems around the pipeline.

The pipeline only talks to the ticket tracker, the source-control remote and
the chat notifier through these protocols. Parsing, formatting and network
calls live in the implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ticket_swarm.models import PullRequest, RunReport, Ticket


@dataclass
class CloneResult:
    """A fresh working copy on a new feature branch."""
    clone_dir: str
    feature_branch: str


class TicketTracker(Protocol):
    """Issue tracker holding the ticket."""

    def fetch_ticket(self, ticket_key: str) -> Ticket:
        """Fetch and parse a ticket."""
        ...

    def transition(self, ticket_key: str, status: str) -> bool:
        """Move the ticket to a status. Returns False when not applicable."""
        ...

    def post_progress(self, ticket_key: str, title: str, body: str) -> None:
        """Post a progress comment on the ticket."""
        ...

    def add_label(self, ticket_key: str, label: str) -> None:
        ...

    def remove_label(self, ticket_key: str, label: str) -> None:
        ...


class SourceControl(Protocol):
    """Remote repository operations around the core steps."""

    def clone(
        self,
        repo: str,
        base_branch: str,
        ticket: Ticket,
        version: Optional[str] = None,
    ) -> CloneResult:
        """Clone the repo and create a feature branch off base_branch."""
        ...

    def commit_and_push(self, clone_dir: str, feature_branch: str, ticket: Ticket) -> bool:
        """Commit all changes and push. Returns False when nothing changed."""
        ...

    def create_pull_request(
        self,
        clone_dir: str,
        feature_branch: str,
        base_branch: str,
        ticket: Ticket,
        description: str,
    ) -> Optional[PullRequest]:
        """Open (or update) a pull request. None when creation failed."""
        ...

    def cleanup(self, clone_dir: str | Path) -> None:
        """Remove a working copy."""
        ...


class Notifier(Protocol):
    """Chat channel receiving the final report."""

    def send_report(self, report: RunReport) -> None:
        ...
