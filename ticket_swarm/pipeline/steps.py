"""
Pipeline step definitions.

Names and numbers are stable: they are persisted in checkpoints and accepted
by resume.
"""

from __future__ import annotations

from enum import Enum
from typing import Union


class Step(Enum):
    """
    Ordered pipeline steps.

    Steps 1-2 run once per ticket, 3-7 once per (service, branch), 8 once.
    """
    FETCH_TICKET = (1, "Fetch and parse ticket")
    VALIDATE_TICKET = (2, "Validate ticket fields")
    CLONE_REPO = (3, "Clone repo and create feature branch")
    BUILD_CHEATSHEET = (4, "Build cheatsheet via debate")
    EXECUTE = (5, "Execute cheatsheet on clone")
    VALIDATE_EXECUTION = (6, "Validate execution result")
    SHIP = (7, "Commit, push, create pull request")
    NOTIFY = (8, "Send final report")

    def __init__(self, number: int, description: str) -> None:
        self.number = number
        self.description = description

    def __lt__(self, other: Step) -> bool:
        if not isinstance(other, Step):
            return NotImplemented
        return self.number < other.number

    def __le__(self, other: Step) -> bool:
        if not isinstance(other, Step):
            return NotImplemented
        return self.number <= other.number

    def __gt__(self, other: Step) -> bool:
        if not isinstance(other, Step):
            return NotImplemented
        return self.number > other.number

    def __ge__(self, other: Step) -> bool:
        if not isinstance(other, Step):
            return NotImplemented
        return self.number >= other.number

    @classmethod
    def from_value(cls, value: Union[Step, str, int]) -> Step:
        """
        Resolve a step from a Step, its name or its number.

        Raises:
            ValueError: If the value names no step.
        """
        if isinstance(value, Step):
            return value
        if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
            number = int(value)
            for step in cls:
                if step.number == number:
                    return step
            raise ValueError(f"Unknown step number: {value}")
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            valid = ", ".join(step.name for step in cls)
            raise ValueError(f"Unknown step: {value}. Valid: {valid}")


# Steps that run once per (service, branch)
BRANCH_STEPS = (
    Step.CLONE_REPO,
    Step.BUILD_CHEATSHEET,
    Step.EXECUTE,
    Step.VALIDATE_EXECUTION,
    Step.SHIP,
)
