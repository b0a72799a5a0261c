"""
Build-cheatsheet step: context, early rejection gate, debate.

The cheatsheet is the most valuable artifact of a run; rejections here are
ordinary outcomes tagged with the phase that produced them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ticket_swarm.complexity import turn_factor_for
from ticket_swarm.debate.context import (
    NO_DESCRIPTION,
    build_codebase_context,
    build_ticket_context,
)
from ticket_swarm.debate.engine import DebateEngine
from ticket_swarm.models import CheatsheetOutcome, Mode, Ticket

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.logger import RunLogger
    from ticket_swarm.providers.strategies import ProviderInvoker

logger = logging.getLogger(__name__)

PHASE_EARLY = "early"
PHASE_LATE = "late"


def early_rejection_reason(ticket: Ticket) -> Optional[str]:
    """Reason the ticket is not worth debating, or None if it passes."""
    if not ticket.summary or ticket.summary == "No summary":
        return "Ticket has no summary"

    if not ticket.description or ticket.description == NO_DESCRIPTION:
        if not ticket.comments:
            return "Ticket has no description and no comments"

    if not ticket.affected_systems:
        return "No Affected Systems specified"

    if not ticket.target_branch and not ticket.target_branches:
        return "No Fix Version specified"

    return None


def build_cheatsheet(
    ticket: Ticket,
    clone_dir: str | Path,
    config: TicketSwarmConfig,
    checkpoint_dir: Optional[str | Path] = None,
    feedback: Optional[str] = None,
    engine: Optional[DebateEngine] = None,
    invoker: Optional[ProviderInvoker] = None,
    run_logger: Optional[RunLogger] = None,
) -> CheatsheetOutcome:
    """
    Produce a vetted cheatsheet for a ticket, or a phased rejection.

    Args:
        ticket: Parsed ticket.
        clone_dir: Repository the debate roles inspect.
        config: Immutable configuration.
        checkpoint_dir: Where debate round outputs are persisted.
        feedback: Guidance for the first proposer round.
        engine: Debate engine to use; built from config when omitted.
        invoker: Provider invoker shared with the engine.
        run_logger: Structured event logger.
    """
    logger.info("Building ticket context...")
    ticket_context = build_ticket_context(ticket)

    logger.info("Building codebase context...")
    codebase_context = build_codebase_context(clone_dir)

    reason = early_rejection_reason(ticket)
    if reason:
        logger.info("Ticket %s rejected before debate: %s", ticket.key, reason)
        return CheatsheetOutcome.rejected(reason, PHASE_EARLY)

    engine = engine or DebateEngine(config, invoker=invoker, logger=run_logger)

    logger.info("Starting debate...")
    outcome = engine.run(
        ticket_context,
        codebase_context,
        clone_dir,
        feedback=feedback,
        checkpoint_dir=checkpoint_dir,
        ticket_key=ticket.key,
        turn_factor=turn_factor_for(ticket, config, Mode.DEBATE),
    )

    if not outcome.passed or not outcome.cheatsheet:
        return CheatsheetOutcome.rejected(
            outcome.feedback or "Debate failed to produce an acceptable cheatsheet", PHASE_LATE
        )

    logger.info(
        "Cheatsheet produced (%d chars, %d rounds)", len(outcome.cheatsheet), outcome.round_count
    )
    return CheatsheetOutcome(
        status="approved",
        cheatsheet=outcome.cheatsheet,
        summary=f"Debate completed in {outcome.round_count} round(s)",
    )
