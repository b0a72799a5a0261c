"""
Re-trigger detection.

A ticket that already carries done labels (``<done_label>`` or
``<done_label>-<version>``) has been shipped before and was sent back for
rework. A short evaluate-mode call reads the comments to decide which
versions need another pass; any failure falls back to processing every
version.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from ticket_swarm.errors import LLMError
from ticket_swarm.models import InvocationRequest, Mode, TargetBranch, Ticket, TicketComment
from ticket_swarm.providers.strategies import run_ai

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.logger import RunLogger
    from ticket_swarm.providers.strategies import ProviderInvoker

logger = logging.getLogger(__name__)

RETRIGGER_LABEL = "retrigger"


@dataclass
class RetriggerResult:
    """Which target branches a run should process."""

    is_retrigger: bool
    branches: Optional[list[TargetBranch]] = None  # None means all of them
    completed_versions: list[str] = field(default_factory=list)
    done_labels: list[str] = field(default_factory=list)
    stale_labels: list[str] = field(default_factory=list)  # To remove before rework
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_retrigger": self.is_retrigger,
            "branches": [b.branch for b in self.branches] if self.branches is not None else None,
            "completed_versions": self.completed_versions,
            "done_labels": self.done_labels,
            "stale_labels": self.stale_labels,
            "reasoning": self.reasoning,
        }


def is_done_label(label: str, done_label: str) -> bool:
    return label == done_label or label.startswith(f"{done_label}-")


def done_label_for(version: Optional[str], done_label: str) -> str:
    """Label recording that a version shipped; the bare label when unversioned."""
    return f"{done_label}-{version}" if version else done_label


def completed_versions(ticket: Ticket, done_labels: list[str], done_label: str) -> list[str]:
    """Versions named by done labels; a bare label counts for a single-version ticket."""
    versions: list[str] = []
    for label in done_labels:
        if label == done_label:
            branches = ticket.branches()
            if len(branches) == 1 and branches[0].version:
                versions.append(branches[0].version)
        else:
            versions.append(label[len(done_label) + 1:])
    return versions


def build_retrigger_prompt(
    ticket_key: str,
    comments: list[TicketComment],
    completed: list[str],
    all_versions: list[str],
) -> str:
    comments_text = "\n\n".join(
        f"Comment {i} by {c.author}:\n{c.text}" for i, c in enumerate(comments, 1)
    )
    return f"""You are analyzing a ticket ({ticket_key}) that was re-triggered for rework.

These versions were already processed: {", ".join(completed)}
All versions on this ticket: {", ".join(all_versions)}

Read the comments below and decide which versions need to be processed again.

IMPORTANT:
- Ignore automated progress comments (titles like "Step 5: Execute cheatsheet").
- If the comments clearly name versions that need rework, return only those.
- If the comments are unclear or name no versions, return ALL versions.
- Phrases like "looks good", "works fine" or "approved" do NOT need rework.
- Phrases like "failing", "needs fix", "rework" or "issue with" need rework.

## Comments
{comments_text}

Respond with ONLY a JSON object in this exact format, no other text:
{{"versionsToProcess": ["1.2.0"], "reasoning": "brief explanation"}}

versionsToProcess must only contain values from this list: {json.dumps(all_versions)}"""


def _extract_json(text: str) -> Optional[dict]:
    """Extract a JSON object from a response, with or without code fences."""
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if fenced:
        try:
            data = json.loads(fenced.group(1))
            return data if isinstance(data, dict) else None
        except json.JSONDecodeError:
            pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            data = json.loads(text[start:end + 1])
            return data if isinstance(data, dict) else None
        except json.JSONDecodeError:
            pass
    return None


def parse_retrigger_response(
    output: str, all_versions: list[str]
) -> Optional[tuple[list[str], str]]:
    """
    Parse the analysis reply.

    Returns:
        (versions to process, reasoning), or None when the reply is unusable.
        Versions not on the ticket are dropped.
    """
    data = _extract_json(output.strip())
    if data is None:
        logger.warning("Re-trigger analysis: no JSON found in response")
        return None

    versions = data.get("versionsToProcess")
    if not isinstance(versions, list):
        logger.warning("Re-trigger analysis: versionsToProcess is not a list")
        return None

    valid = [v for v in versions if v in all_versions]
    if len(valid) != len(versions):
        logger.warning(
            "Re-trigger analysis: dropped versions not on the ticket (%d -> %d)",
            len(versions), len(valid),
        )
    return valid, str(data.get("reasoning") or "")


def detect_retrigger(
    ticket: Ticket,
    config: TicketSwarmConfig,
    invoker: Optional[ProviderInvoker] = None,
    run_logger: Optional[RunLogger] = None,
) -> RetriggerResult:
    """
    Decide which target branches a possibly re-triggered ticket needs.

    Never raises for analysis failures; those process every version.
    """
    done_label = config.pipeline.done_label
    done_labels = [label for label in ticket.labels if is_done_label(label, done_label)]
    if not done_labels:
        return RetriggerResult(is_retrigger=False)

    completed = completed_versions(ticket, done_labels, done_label)
    branches = ticket.branches()
    all_versions = [b.version for b in branches if b.version]
    process_all = RetriggerResult(
        is_retrigger=True,
        completed_versions=completed,
        done_labels=done_labels,
        stale_labels=list(done_labels),
    )

    if not ticket.comments:
        logger.info("Re-trigger detected but no comments, processing all versions")
        return process_all
    if not all_versions:
        logger.info("Re-trigger detected on an unversioned ticket, processing all branches")
        return process_all

    request = InvocationRequest(
        prompt=build_retrigger_prompt(ticket.key, ticket.comments, completed, all_versions),
        working_dir=str(Path.cwd()),
        mode=Mode.EVALUATE,
        label=RETRIGGER_LABEL,
        ticket_key=ticket.key,
        log_dir=config.agent.log_dir,
    )
    logger.info("Running re-trigger analysis for %s...", ticket.key)
    try:
        result = run_ai(request, config, invoker=invoker, run_logger=run_logger)
    except LLMError as e:
        logger.warning("Re-trigger analysis failed: %s", e)
        return process_all

    parsed = parse_retrigger_response(result.output or "", all_versions)
    if parsed is None or not parsed[0]:
        logger.info("Re-trigger analysis gave no versions, processing all versions")
        return process_all

    versions, reasoning = parsed
    new_versions = [v for v in all_versions if v not in completed]
    selected = set(versions) | set(new_versions)
    filtered = [b for b in branches if b.version in selected]

    stale = [
        label for label in done_labels
        if label == done_label or label[len(done_label) + 1:] in selected
    ]
    return RetriggerResult(
        is_retrigger=True,
        branches=filtered,
        completed_versions=completed,
        done_labels=done_labels,
        stale_labels=stale,
        reasoning=reasoning,
    )
