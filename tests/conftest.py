"""Shared fixtures for the Ticket Swarm test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest
from typer.testing import CliRunner

from ticket_swarm.config import config_from_dict
from ticket_swarm.models import InvocationResult, TargetBranch, Ticket, TicketComment


def make_result(
    output: str = "",
    completed: bool = True,
    provider: str = "claude",
    rate_limited: bool = False,
    exit_code: int = 0,
) -> InvocationResult:
    """Build an InvocationResult with sensible defaults."""
    return InvocationResult(
        output=output,
        completed_normally=completed,
        exit_code=exit_code,
        turn_count=None,
        rate_limited=rate_limited,
        provider=provider,
        duration_seconds=1.0,
    )


def make_ticket(key: str = "PROJ-123", **overrides) -> Ticket:
    """A ticket that passes every early gate."""
    fields = dict(
        key=key,
        summary="Add retry to payment webhook handler",
        description="The webhook handler drops events when the upstream times out.",
        comments=[TicketComment(author="dev", text="See src/webhooks/handler.ts")],
        affected_systems=["payments"],
        target_branch="main",
        target_branches=[TargetBranch(branch="main", version="1.2.0")],
    )
    fields.update(overrides)
    return Ticket(**fields)


# A transcript that passes the structural check
GOOD_TRANSCRIPT = (
    "## Proposer's Final Proposal\n\n"
    "1. Modify src/webhooks/handler.ts to wrap the upstream call in a retry.\n"
    "2. Add a helper in src/utils/retry.ts with exponential backoff.\n"
    "3. Update tests/webhooks/handler.test.ts to cover the retry path.\n"
    "Create the helper first, then change the handler and add tests.\n\n"
    "## Critic's Final Position\n\nAgreed. Remove the old timeout constant.\n"
)


@pytest.fixture
def tmp_config(tmp_path: Path):
    """Factory for a config rooted in tmp_path."""

    def _make(
        strategy: str = "single",
        execute: Optional[dict] = None,
        debate: Optional[dict] = None,
        evaluate: Optional[dict] = None,
        execution_retries: int = 1,
    ):
        return config_from_dict({
            "ai_provider": {
                "strategy": strategy,
                "execute": execute or {},
                "debate": debate or {},
                "evaluate": evaluate or {},
            },
            "agent": {
                "log_dir": str(tmp_path / "logs"),
                "execution_retries": execution_retries,
            },
            "pipeline": {"state_dir": str(tmp_path / "state")},
            "services": {
                "payments": {"name": "payments-api", "repo": "payments-api"},
                "web": {"repo": "web-app"},
            },
        })

    return _make


@pytest.fixture
def ticket() -> Ticket:
    return make_ticket()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()
