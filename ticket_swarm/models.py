"""
Core data models for Ticket Swarm.

This module defines the foundational data structures used throughout the system:
- Enums for invocation modes, provider kinds and execution strategies
- Invocation request/result records shared by the spawn engine and strategies
- Tagged stream event variants produced by the stream parser
- Debate, evaluation and validation outcomes
- Ticket, pull request and run report records exchanged with collaborators
- JSON serialization support for persisted models
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Mode(Enum):
    """
    Invocation modes.

    The mode selects the provider configuration (tools, model, timeout)
    and whether the worker may write to its working directory.
    """
    EXECUTE = "execute"              # Write-capable, applies a cheatsheet
    DEBATE = "debate"                # Read-only, proposer/critic roles
    EVALUATE = "evaluate"            # Read-only, quality-gate judge

    @property
    def is_write_capable(self) -> bool:
        """Only the executor is allowed to mutate the working directory."""
        return self is Mode.EXECUTE


class ProviderKind(Enum):
    """Closed set of supported coding-agent CLIs."""
    CLAUDE = "claude"
    CODEX = "codex"

    @classmethod
    def parse(cls, value: str) -> ProviderKind:
        """Parse a provider name, raising ValueError for unknown names."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown provider: {value}. Valid: {valid}")


class StrategyKind(Enum):
    """Policies for combining one or two provider invocations."""
    SINGLE = "single"
    FALLBACK = "fallback"
    PARALLEL = "parallel"
    RACE = "race"

    @classmethod
    def parse(cls, value: str) -> StrategyKind:
        """Parse a strategy name, raising ValueError for unknown names."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown AI provider strategy: {value}. Valid: {valid}")


# ============================================================================
# Invocation records
# ============================================================================


@dataclass(frozen=True)
class InvocationRequest:
    """
    A provider-independent request to run a coding agent.

    Immutable once built; strategies derive per-provider labels and
    working directories without mutating it.
    """
    prompt: str
    working_dir: str
    mode: Mode
    label: str
    ticket_key: Optional[str] = None  # Used for per-invocation log filenames
    log_dir: Optional[str] = None     # Where per-invocation log files go
    turn_factor: float = 1.0          # Scales the provider's turn budget


@dataclass(frozen=True)
class ProviderInvocation:
    """CLI arguments and bounds built by an adapter for one invocation."""
    args: list[str]
    timeout_seconds: float
    turn_limit: Optional[int]         # None means the provider has no turn concept


@dataclass
class SpawnResult:
    """Raw outcome of a finished CLI process."""
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    event_count: int = 0


@dataclass
class ParsedOutput:
    """Adapter interpretation of a provider's stdout."""
    output: str
    turn_count: Optional[int]
    completed_normally: bool


@dataclass
class InvocationResult:
    """
    Uniform result of one invocation, whichever strategy produced it.

    Exactly one is produced per strategy call.
    """
    output: str
    completed_normally: bool
    exit_code: int
    turn_count: Optional[int]
    rate_limited: bool
    provider: str
    duration_seconds: float

    @classmethod
    def failure(cls, provider: str) -> InvocationResult:
        """Zero-length failing placeholder for a provider that threw."""
        return cls(
            output="",
            completed_normally=False,
            exit_code=-1,
            turn_count=None,
            rate_limited=False,
            provider=provider,
            duration_seconds=0.0,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


# ============================================================================
# Stream events
# ============================================================================


@dataclass(frozen=True)
class StructuredEvent:
    """A stdout line that parsed as a JSON object."""
    payload: dict[str, Any]

    @property
    def type(self) -> str:
        return str(self.payload.get("type", ""))


@dataclass(frozen=True)
class RawTextEvent:
    """A stdout line that did not parse; forwarded rather than dropped."""
    text: str


StreamEvent = Union[StructuredEvent, RawTextEvent]


# ============================================================================
# Debate and evaluation
# ============================================================================


@dataclass(frozen=True)
class DebateRound:
    """One completed proposer/critic exchange."""
    number: int
    proposer_output: str
    critic_output: str

    def transcript(self) -> str:
        """Combined text submitted to the evaluator for this round."""
        return (
            f"## Proposer's Final Proposal\n\n{self.proposer_output}\n\n"
            f"## Critic's Final Position\n\n{self.critic_output}"
        )


@dataclass
class EvaluationResult:
    """Quality-gate verdict on a debate transcript."""
    passed: bool
    feedback: str = ""
    cheatsheet: Optional[str] = None


@dataclass
class DebateOutcome:
    """Result of a full debate run."""
    passed: bool
    cheatsheet: Optional[str]
    feedback: Optional[str]
    rounds: list[DebateRound] = field(default_factory=list)
    forced: bool = False

    @property
    def round_count(self) -> int:
        return len(self.rounds)


@dataclass
class CheatsheetOutcome:
    """
    Result of the build-cheatsheet step.

    Rejections carry a phase: "early" for ticket-shape problems caught before
    any agent runs, "late" when the debate failed to produce a plan.
    """
    status: str                      # "approved" or "rejected"
    cheatsheet: Optional[str] = None
    summary: str = ""
    reason: str = ""
    phase: Optional[str] = None      # "early" or "late" for rejections

    @property
    def approved(self) -> bool:
        return self.status == "approved"

    @classmethod
    def rejected(cls, reason: str, phase: str) -> CheatsheetOutcome:
        return cls(status="rejected", reason=reason, phase=phase)


@dataclass
class ExecutionValidation:
    """Structural check of the working directory after execution."""
    valid: bool
    issues: list[str] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)


# ============================================================================
# Ticket and run records
# ============================================================================


@dataclass
class TicketComment:
    author: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TargetBranch:
    """A base branch the ticket must land on."""
    branch: str
    version: Optional[str] = None
    version_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Ticket:
    """
    Parsed ticket record handed over by the ticket tracker.

    Field extraction and markup conversion happen in the tracker; this is
    the plain-text shape the pipeline consumes.
    """
    key: str
    summary: str = ""
    description: str = ""
    comments: list[TicketComment] = field(default_factory=list)
    affected_systems: list[str] = field(default_factory=list)
    target_branch: Optional[str] = None
    target_branches: list[TargetBranch] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    def branches(self) -> list[TargetBranch]:
        """Target branches in processing order, falling back to target_branch."""
        if self.target_branches:
            return list(self.target_branches)
        if self.target_branch:
            return [TargetBranch(branch=self.target_branch)]
        return []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ticket:
        """Create from dictionary."""
        data = data.copy()
        data["comments"] = [
            TicketComment(**c) if isinstance(c, dict) else c
            for c in data.get("comments") or []
        ]
        data["target_branches"] = [
            TargetBranch(**b) if isinstance(b, dict) else b
            for b in data.get("target_branches") or []
        ]
        data["affected_systems"] = list(data.get("affected_systems") or [])
        data["labels"] = list(data.get("labels") or [])
        return cls(**data)


@dataclass
class PullRequest:
    pr_id: str
    pr_url: str
    base_branch: str
    version: Optional[str] = None
    already_exists: bool = False
    service: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PullRequest:
        return cls(**data)


@dataclass
class BranchFailure:
    service: str
    base_branch: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BranchFailure:
        return cls(**data)


@dataclass
class BranchResult:
    """Outcome of steps 3-7 for one (service, branch) combination."""
    service: str
    base_branch: str
    pull_request: Optional[PullRequest] = None
    error: Optional[str] = None
    cheatsheet_summary: str = ""


@dataclass
class RunReport:
    """
    Final outward report of a pipeline run.

    Exactly one is produced per run, whatever the terminal outcome.
    """
    ticket_key: str
    success: bool
    reason: str = ""
    pull_requests: list[PullRequest] = field(default_factory=list)
    failures: list[BranchFailure] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cheatsheet_summary: str = ""
    run_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


# JSON encoder for custom types
class SwarmEncoder(json.JSONEncoder):
    """JSON encoder that handles Ticket Swarm model types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.name
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def model_to_json(obj: Any, **kwargs: Any) -> str:
    """Serialize a model object to JSON string."""
    return json.dumps(obj, cls=SwarmEncoder, **kwargs)
