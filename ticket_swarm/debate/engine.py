"""
Proposer/critic debate that turns ticket and codebase context into a plan.

Flow:
    Round 1: proposer proposes, critic critiques and counter-proposes
    Rounds 2..N: proposer revises, critic refines toward one plan
    After each round: the evaluator judges the latest pair; approval stops
    After the last round: one forced evaluation produces a best-effort plan

Both roles run sequentially in DEBATE mode with read-only tools.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from ticket_swarm.debate.context import build_base_context
from ticket_swarm.debate.evaluator import Evaluator
from ticket_swarm.debate.prompts import critic_prompt, proposer_prompt
from ticket_swarm.errors import LLMError
from ticket_swarm.models import (
    DebateOutcome,
    DebateRound,
    InvocationRequest,
    InvocationResult,
    Mode,
)
from ticket_swarm.providers.strategies import is_garbage_output, run_ai
from ticket_swarm.utils.fs import FileSystemError, safe_write

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.logger import RunLogger
    from ticket_swarm.providers.strategies import ProviderInvoker

logger = logging.getLogger(__name__)

ROUNDS_DIR = "debate-rounds"
PROPOSER = "proposer"
CRITIC = "critic"
DEFAULT_FAILURE = "Debate failed to produce an acceptable cheatsheet"


def round_file(checkpoint_dir: str | Path, round_number: int, role: str) -> Path:
    return Path(checkpoint_dir) / ROUNDS_DIR / f"round-{round_number}-{role}.md"


def save_round_output(checkpoint_dir: str | Path, round_number: int, role: str, output: str) -> None:
    """Persist one role's raw output. Failures are logged, not raised."""
    path = round_file(checkpoint_dir, round_number, role)
    try:
        safe_write(path, output)
        logger.debug("Saved debate round %d %s output to %s", round_number, role, path)
    except FileSystemError as e:
        logger.warning("Could not save debate round %d %s output: %s", round_number, role, e)


class DebateEngine:
    """
    Runs the bounded proposer/critic debate.

    Rate limits and worker errors abandon the remaining rounds; the last
    complete transcript is still evaluated.
    """

    def __init__(
        self,
        config: TicketSwarmConfig,
        evaluator: Optional[Evaluator] = None,
        invoker: Optional[ProviderInvoker] = None,
        logger: Optional[RunLogger] = None,
    ) -> None:
        self.config = config
        self._invoker = invoker
        self._logger = logger
        self.evaluator = evaluator or Evaluator(config, invoker=invoker, logger=logger)

    @property
    def max_rounds(self) -> int:
        return self.config.ai_provider.debate.max_rounds

    def _log(self, event_type: str, data: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def _run_role(
        self,
        role: str,
        prompt: str,
        round_number: int,
        clone_dir: str,
        ticket_key: str,
        turn_factor: float = 1.0,
    ) -> Optional[InvocationResult]:
        """Run one role; None means the worker failed and the debate must stop."""
        logger.info("[Round %d] Running %s...", round_number, role)
        request = InvocationRequest(
            prompt=prompt,
            working_dir=clone_dir,
            mode=Mode.DEBATE,
            label=f"debate-r{round_number}-{role}",
            ticket_key=ticket_key,
            log_dir=self.config.agent.log_dir,
            turn_factor=turn_factor,
        )
        try:
            return run_ai(request, self.config, invoker=self._invoker, run_logger=self._logger)
        except LLMError as e:
            logger.warning("%s failed in round %d: %s", role.capitalize(), round_number, e)
            self._log("debate_role_error", {
                "round": round_number, "role": role, "error": str(e),
            }, level="warn")
            return None

    def _accept_output(
        self,
        result: InvocationResult,
        role: str,
        round_number: int,
        checkpoint_dir: Optional[str | Path],
    ) -> bool:
        """Persist a role's output; False when the debate must stop."""
        output = result.output or ""
        if checkpoint_dir is not None:
            save_round_output(checkpoint_dir, round_number, role, output)

        if is_garbage_output(output):
            logger.warning("%s round %d produced garbage output", role.capitalize(), round_number)

        if result.rate_limited:
            logger.warning("%s rate limited in round %d", role.capitalize(), round_number)
            self._log("debate_rate_limited", {"round": round_number, "role": role}, level="warn")
            return False
        return True

    def run(
        self,
        ticket_context: str,
        codebase_context: str,
        clone_dir: str | Path,
        feedback: Optional[str] = None,
        checkpoint_dir: Optional[str | Path] = None,
        ticket_key: str = "debate",
        turn_factor: float = 1.0,
    ) -> DebateOutcome:
        """
        Run the debate to approval, exhaustion or abandonment.

        Args:
            ticket_context: Ticket markdown.
            codebase_context: Repository overview markdown.
            clone_dir: Directory the roles may inspect.
            feedback: Guidance appended to the first proposer prompt.
            checkpoint_dir: Where round outputs are persisted, if given.
            ticket_key: Used for log filenames.
            turn_factor: Multiplier for the proposer and critic turn budgets.

        Returns:
            DebateOutcome with the cheatsheet when one was produced.
        """
        base_context = build_base_context(ticket_context, codebase_context)
        clone_dir = str(clone_dir)
        max_rounds = self.max_rounds

        proposal = ""
        critique = ""
        transcript = ""
        rounds: list[DebateRound] = []

        for round_number in range(1, max_rounds + 1):
            logger.info("=== Debate Round %d/%d ===", round_number, max_rounds)

            prompt = proposer_prompt(
                base_context,
                round_number,
                previous_proposal=proposal,
                critique=critique,
                feedback=feedback or "",
            )
            result = self._run_role(PROPOSER, prompt, round_number, clone_dir, ticket_key, turn_factor)
            if result is None:
                break
            proposal = result.output or ""
            if not self._accept_output(result, PROPOSER, round_number, checkpoint_dir):
                break

            prompt = critic_prompt(
                base_context, round_number, proposal, previous_critique=critique
            )
            result = self._run_role(CRITIC, prompt, round_number, clone_dir, ticket_key, turn_factor)
            if result is None:
                break
            critique = result.output or ""
            if not self._accept_output(result, CRITIC, round_number, checkpoint_dir):
                break

            debate_round = DebateRound(
                number=round_number, proposer_output=proposal, critic_output=critique
            )
            rounds.append(debate_round)
            transcript = debate_round.transcript()

            logger.info("[Round %d] Evaluating debate output...", round_number)
            verdict = self.evaluator.evaluate(transcript, ticket_context, force=False, ticket_key=ticket_key)
            self._log("debate_round_complete", {
                "round": round_number,
                "approved": verdict.passed,
                "feedback": verdict.feedback,
            })

            if verdict.passed:
                logger.info("Debate approved after round %d", round_number)
                return DebateOutcome(
                    passed=True, cheatsheet=verdict.cheatsheet, feedback=None, rounds=rounds
                )
            logger.info("Debate round %d rejected: %s", round_number, verdict.feedback)

        if transcript:
            logger.info("Debate rounds exhausted. Forcing best-effort cheatsheet...")
            forced = self.evaluator.evaluate(transcript, ticket_context, force=True, ticket_key=ticket_key)
            if forced.cheatsheet:
                return DebateOutcome(
                    passed=True,
                    cheatsheet=forced.cheatsheet,
                    feedback="Forced after max rounds",
                    rounds=rounds,
                    forced=True,
                )

        self._log("debate_failed", {"rounds": len(rounds)}, level="warn")
        return DebateOutcome(passed=False, cheatsheet=None, feedback=DEFAULT_FAILURE, rounds=rounds)
