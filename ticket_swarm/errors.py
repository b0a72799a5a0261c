"""
Error classification for Ticket Swarm.

This module provides:
- LLMErrorType enum for categorizing coding-agent worker failures
- Exception classes raised by the spawn engine and strategies
- RateLimitClassifier for detecting exhausted quotas from CLI output
- Pipeline errors for checkpoint persistence and resume

Quality rejections (debate/evaluator) and execution-validation issues are
plain values, never exceptions.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Optional


class LLMErrorType(Enum):
    """
    Classification of coding-agent CLI failures.

    Used by callers to decide whether to abandon, retry or fall back.
    """

    # Worker failures
    TIMEOUT = auto()            # Wall-clock bound exceeded, process terminated
    SPAWN_FAILED = auto()       # OS refused to start the process
    CLI_NOT_FOUND = auto()      # CLI binary not installed / not on PATH

    # Strategy level
    ALL_PROVIDERS_FAILED = auto()  # Every provider of a race/parallel threw

    # Configuration
    UNKNOWN_PROVIDER = auto()   # Provider name outside the closed set

    # Unknown
    UNKNOWN = auto()


class LLMError(Exception):
    """
    Base exception for coding-agent worker errors.

    Includes error type classification for handling decisions.
    """

    def __init__(
        self,
        message: str,
        error_type: LLMErrorType = LLMErrorType.UNKNOWN,
        stderr: str = "",
        returncode: int = -1,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.stderr = stderr
        self.returncode = returncode
        self.recoverable = recoverable

    @property
    def requires_user_action(self) -> bool:
        """Check if this error requires user intervention."""
        return self.error_type in (
            LLMErrorType.CLI_NOT_FOUND,
            LLMErrorType.UNKNOWN_PROVIDER,
        )


class SpawnError(LLMError):
    """Raised when a CLI process cannot be started."""

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(
            message,
            error_type=LLMErrorType.SPAWN_FAILED,
            recoverable=True,
        )
        self.command = command


class CLINotFoundError(SpawnError):
    """Raised when the CLI binary is not found."""

    def __init__(self, cli_name: str) -> None:
        super().__init__(
            f"{cli_name} CLI not found. Please install it first.",
            command=cli_name,
        )
        self.error_type = LLMErrorType.CLI_NOT_FOUND
        self.recoverable = False
        self.cli_name = cli_name


class SpawnTimeoutError(LLMError):
    """Raised when a CLI process exceeds its wall-clock bound."""

    def __init__(
        self,
        message: str,
        timeout_seconds: float,
        elapsed_seconds: float,
        returncode: int = -1,
    ) -> None:
        super().__init__(
            message,
            error_type=LLMErrorType.TIMEOUT,
            returncode=returncode,
            recoverable=True,
        )
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds


class StrategyError(LLMError):
    """Raised when every provider of a multi-provider strategy threw."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            error_type=LLMErrorType.ALL_PROVIDERS_FAILED,
            recoverable=True,
        )


class UnknownProviderError(LLMError):
    """Raised when a provider name is outside the supported set."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Unknown provider: {provider}",
            error_type=LLMErrorType.UNKNOWN_PROVIDER,
            recoverable=False,
        )
        self.provider = provider


class RateLimitClassifier:
    """
    Detects rate-limit signatures in CLI output.

    Rate limits are reported as a flag on the invocation result so callers
    can abort early instead of retrying into an exhausted quota.
    """

    # Shared signatures checked for every provider
    GENERIC_SIGNATURES = (
        "You've hit your limit",
        "resets ",
    )

    CLAUDE_SIGNATURES = (
        "You've hit your limit",
        "resets ",
    )

    CODEX_SIGNATURES = (
        "rate limit",
        "Rate limit",
    )

    @classmethod
    def matches_any(cls, text: Optional[str], signatures: tuple[str, ...]) -> bool:
        """Check if text contains any of the given signatures."""
        if not text:
            return False
        return any(signature in text for signature in signatures)

    @classmethod
    def is_rate_limited(cls, text: Optional[str]) -> bool:
        """Check text against the generic signatures."""
        return cls.matches_any(text, cls.GENERIC_SIGNATURES)


class CheckpointError(Exception):
    """Raised when a checkpoint cannot be persisted."""
    pass


class ResumeError(Exception):
    """Raised when a run cannot be resumed from its checkpoint."""

    def __init__(self, message: str, ticket_key: str = "") -> None:
        super().__init__(message)
        self.ticket_key = ticket_key
