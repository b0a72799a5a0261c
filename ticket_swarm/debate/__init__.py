"""Debate, evaluation and cheatsheet building."""

from ticket_swarm.debate.builder import build_cheatsheet, early_rejection_reason
from ticket_swarm.debate.engine import DebateEngine
from ticket_swarm.debate.evaluator import Evaluator, structural_check

__all__ = [
    "DebateEngine",
    "Evaluator",
    "build_cheatsheet",
    "early_rejection_reason",
    "structural_check",
]
