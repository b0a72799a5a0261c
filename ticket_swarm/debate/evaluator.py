"""
Quality gate for debate transcripts.

Two stages:
1. A structural pre-check with no agent invocation (length, file paths,
   action verbs). Skipped in forced mode.
2. A judge invocation that approves with a delimited cheatsheet or rejects
   with delimited feedback.

Forced mode always produces a cheatsheet when the judge returns at all,
falling back to the raw transcript.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from ticket_swarm.debate.prompts import (
    APPROVED,
    CHEATSHEET_END,
    CHEATSHEET_START,
    FEEDBACK_MARKER,
    REJECTED,
    judge_prompt,
)
from ticket_swarm.errors import LLMError
from ticket_swarm.models import EvaluationResult, InvocationRequest, Mode
from ticket_swarm.providers.strategies import run_ai

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.logger import RunLogger
    from ticket_swarm.providers.strategies import ProviderInvoker

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_CHARS = 200
MIN_FILE_PATHS = 2
MIN_ACTION_VERBS = 3
MIN_CHEATSHEET_CHARS = 100
MAX_FEEDBACK_CHARS = 500

FILE_PATH_PATTERN = re.compile(
    r"[\w\-./]+\.(?:js|ts|jsx|tsx|json|yml|yaml|md|css|html|py|go|rs|sh)"
)
ACTION_VERB_PATTERN = re.compile(
    r"\b(?:create|modify|add|remove|update|change|replace|delete|implement|refactor)\b",
    re.IGNORECASE,
)

DEFAULT_REJECTION = "Evaluator rejected without specific feedback"


def structural_check(transcript: Optional[str]) -> EvaluationResult:
    """
    Cheap structural checks on a transcript. Pure and idempotent.
    """
    if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_CHARS:
        return EvaluationResult(
            passed=False, feedback=f"Debate output too short (< {MIN_TRANSCRIPT_CHARS} chars)"
        )

    if len(FILE_PATH_PATTERN.findall(transcript)) < MIN_FILE_PATHS:
        return EvaluationResult(
            passed=False,
            feedback=f"Debate output mentions fewer than {MIN_FILE_PATHS} file paths",
        )

    if len(ACTION_VERB_PATTERN.findall(transcript)) < MIN_ACTION_VERBS:
        return EvaluationResult(
            passed=False,
            feedback=(
                "Debate output lacks actionable language "
                f"(fewer than {MIN_ACTION_VERBS} action verbs)"
            ),
        )

    return EvaluationResult(passed=True)


def extract_cheatsheet(output: str) -> Optional[str]:
    """Delimited cheatsheet block, else substantial text after APPROVED."""
    start = output.find(CHEATSHEET_START)
    end = output.find(CHEATSHEET_END)
    if start != -1 and end != -1 and end > start:
        return output[start + len(CHEATSHEET_START):end].strip()

    approved_at = output.find(APPROVED)
    if approved_at != -1:
        after = output[approved_at + len(APPROVED):].strip()
        if len(after) > MIN_CHEATSHEET_CHARS:
            return after

    return None


def extract_feedback(output: str) -> Optional[str]:
    """Text after the feedback marker, else the start of the text after REJECTED."""
    marker_at = output.find(FEEDBACK_MARKER)
    if marker_at != -1:
        return output[marker_at + len(FEEDBACK_MARKER):].strip()

    rejected_at = output.find(REJECTED)
    if rejected_at != -1:
        return output[rejected_at + len(REJECTED):].strip()[:MAX_FEEDBACK_CHARS]

    return None


def parse_verdict(output: str, transcript: str, force: bool) -> EvaluationResult:
    """Turn the judge's response into a verdict."""
    if APPROVED in output:
        cheatsheet = extract_cheatsheet(output)
        if cheatsheet and len(cheatsheet) > MIN_CHEATSHEET_CHARS:
            return EvaluationResult(passed=True, cheatsheet=cheatsheet)
        # Approved but nothing extractable
        return EvaluationResult(passed=True, cheatsheet=transcript)

    if REJECTED in output and not force:
        return EvaluationResult(
            passed=False, feedback=extract_feedback(output) or DEFAULT_REJECTION
        )

    if force:
        return EvaluationResult(
            passed=True,
            feedback="Forced extraction",
            cheatsheet=extract_cheatsheet(output) or transcript,
        )

    return EvaluationResult(passed=False, feedback="Evaluator produced ambiguous response")


class Evaluator:
    """
    Judges debate transcripts and extracts the cheatsheet.

    The judge runs in EVALUATE mode (read-only tools) through run_ai().
    """

    def __init__(
        self,
        config: TicketSwarmConfig,
        invoker: Optional[ProviderInvoker] = None,
        logger: Optional[RunLogger] = None,
        working_dir: Optional[str | Path] = None,
    ) -> None:
        self.config = config
        self._invoker = invoker
        self._logger = logger
        self._working_dir = working_dir

    def _log(self, event_type: str, data: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def evaluate(
        self,
        transcript: str,
        ticket_context: str,
        force: bool = False,
        ticket_key: Optional[str] = None,
    ) -> EvaluationResult:
        """
        Evaluate a debate transcript.

        Args:
            transcript: Combined proposer and critic text.
            ticket_context: Ticket markdown shown to the judge.
            force: Produce a best-effort cheatsheet whatever the judge says.
            ticket_key: Used for per-invocation log filenames.

        Returns:
            EvaluationResult; rejections are values, never exceptions.
        """
        if not force:
            check = structural_check(transcript)
            if not check.passed:
                self._log("evaluation_structural_reject", {"feedback": check.feedback})
                return check

        request = InvocationRequest(
            prompt=judge_prompt(transcript, ticket_context, force),
            working_dir=str(self._working_dir or Path.cwd()),
            mode=Mode.EVALUATE,
            label="evaluator-force" if force else "evaluator",
            ticket_key=ticket_key,
            log_dir=self.config.agent.log_dir,
        )

        try:
            result = run_ai(request, self.config, invoker=self._invoker, run_logger=self._logger)
        except LLMError as e:
            logger.warning("Evaluator failed: %s", e)
            self._log("evaluation_error", {"error": str(e), "force": force}, level="warn")
            if force:
                return EvaluationResult(
                    passed=True,
                    feedback="Evaluator failed, using raw debate output",
                    cheatsheet=transcript,
                )
            return EvaluationResult(passed=False, feedback=f"Evaluator error: {e}")
        except Exception as e:
            if not force:
                raise
            logger.exception("Forced evaluation failed")
            self._log("evaluation_error", {"error": str(e), "force": True}, level="error")
            return EvaluationResult(passed=False, feedback=f"Forced evaluation failed: {e}")

        verdict = parse_verdict(result.output or "", transcript, force)
        self._log("evaluation_complete", {
            "passed": verdict.passed,
            "force": force,
            "cheatsheet_chars": len(verdict.cheatsheet or ""),
        })
        return verdict
