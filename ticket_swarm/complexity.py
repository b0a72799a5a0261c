"""
Ticket complexity scoring.

Heuristic, no LLM call. The score decides how far the debate roles' and
the executor's turn budgets are raised for a ticket.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ticket_swarm.models import Mode

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.models import Ticket

logger = logging.getLogger(__name__)

LEVEL_SIMPLE = "simple"
LEVEL_MODERATE = "moderate"
LEVEL_COMPLEX = "complex"

MODERATE_SCORE = 4
COMPLEX_SCORE = 8

COMPLEXITY_KEYWORDS = (
    "refactor", "rewrite", "split", "modular", "god file",
    "migrate", "new module", "redesign", "overhaul", "restructure",
)

FILE_MENTION_PATTERN = re.compile(
    r"\b[\w\-/]+\.(?:js|ts|jsx|tsx|mjs|cjs|json|yaml|yml|py)\b"
)

# Comment authors containing this are bots, not people
BOT_AUTHOR_MARKER = "automation"

# Turn budget multipliers per level and mode; evaluation is never scaled
TURN_FACTORS: dict[str, dict[Mode, float]] = {
    LEVEL_MODERATE: {Mode.EXECUTE: 2.0, Mode.DEBATE: 1.25},
    LEVEL_COMPLEX: {Mode.EXECUTE: 3.0, Mode.DEBATE: 1.5},
}


@dataclass
class ComplexityScore:
    """Outcome of scoring one ticket."""

    level: str
    score: int
    signals: dict[str, dict[str, Any]] = field(default_factory=dict)

    def turn_factor(self, mode: Mode) -> float:
        """Multiplier applied to a mode's turn budget."""
        return TURN_FACTORS.get(self.level, {}).get(mode, 1.0)

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "score": self.score, "signals": self.signals}


def _signal(value: Any, points: int) -> dict[str, Any]:
    return {"value": value, "points": points}


def score_complexity(ticket: Ticket) -> ComplexityScore:
    """
    Score a ticket from its description, comments and affected systems.

    Signals:
    - Description length (>2000 chars: 1, >5000 chars: 3)
    - Human comment count (>=3: 1, >=5: 3)
    - Total comment text over 10000 chars: 2
    - Complexity keywords (>=1: 1, >=3: 3)
    - Distinct source files mentioned (>=4: 1, >=8: 3)
    - More than one affected system: 1

    A score of 4 or more is moderate, 8 or more is complex.
    """
    description = ticket.description or ""
    comments = ticket.comments or []
    signals: dict[str, dict[str, Any]] = {}

    if len(description) > 5000:
        signals["description_length"] = _signal(len(description), 3)
    elif len(description) > 2000:
        signals["description_length"] = _signal(len(description), 1)

    human_count = sum(
        1 for c in comments if BOT_AUTHOR_MARKER not in (c.author or "").lower()
    )
    if human_count >= 5:
        signals["human_comment_count"] = _signal(human_count, 3)
    elif human_count >= 3:
        signals["human_comment_count"] = _signal(human_count, 1)

    comment_chars = sum(len(c.text or "") for c in comments)
    if comment_chars > 10000:
        signals["comment_text_length"] = _signal(comment_chars, 2)

    text = " ".join([description] + [c.text or "" for c in comments]).lower()

    keywords = [kw for kw in COMPLEXITY_KEYWORDS if kw in text]
    if len(keywords) >= 3:
        signals["complexity_keywords"] = _signal(keywords, 3)
    elif keywords:
        signals["complexity_keywords"] = _signal(keywords, 1)

    files = set(FILE_MENTION_PATTERN.findall(text))
    if len(files) >= 8:
        signals["files_mentioned"] = _signal(len(files), 3)
    elif len(files) >= 4:
        signals["files_mentioned"] = _signal(len(files), 1)

    if len(ticket.affected_systems) > 1:
        signals["multiple_affected_systems"] = _signal(len(ticket.affected_systems), 1)

    score = sum(s["points"] for s in signals.values())
    if score >= COMPLEX_SCORE:
        level = LEVEL_COMPLEX
    elif score >= MODERATE_SCORE:
        level = LEVEL_MODERATE
    else:
        level = LEVEL_SIMPLE

    return ComplexityScore(level=level, score=score, signals=signals)


def turn_factor_for(ticket: Ticket, config: TicketSwarmConfig, mode: Mode) -> float:
    """Turn budget multiplier for a ticket's invocations in a mode."""
    if not config.agent.complexity_scaling:
        return 1.0
    complexity = score_complexity(ticket)
    factor = complexity.turn_factor(mode)
    if factor != 1.0:
        logger.info(
            "Ticket %s is %s (score %d): %s turn budget x%s",
            ticket.key, complexity.level, complexity.score, mode.value, factor,
        )
    return factor
