"""Ticket pipeline: steps, checkpoints and the orchestrator."""

from ticket_swarm.pipeline.checkpoint import Checkpoint, CheckpointStore
from ticket_swarm.pipeline.collaborators import (
    CloneResult,
    Notifier,
    SourceControl,
    TicketTracker,
)
from ticket_swarm.pipeline.orchestrator import Pipeline
from ticket_swarm.pipeline.steps import BRANCH_STEPS, Step

__all__ = [
    "BRANCH_STEPS",
    "Checkpoint",
    "CheckpointStore",
    "CloneResult",
    "Notifier",
    "Pipeline",
    "SourceControl",
    "Step",
    "TicketTracker",
]
