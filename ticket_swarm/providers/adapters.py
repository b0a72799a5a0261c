"""
Provider adapters for the supported coding-agent CLIs.

Each adapter translates between the generic invocation interface and one
CLI: it builds the argument list and bounds for a prompt, interprets the raw
stdout once the process has exited, and recognizes its own rate-limit
messages. Adapters never spawn processes themselves.
"""

from __future__ import annotations

import shutil
from typing import Optional, Protocol

from ticket_swarm.config import ProviderSettings
from ticket_swarm.errors import RateLimitClassifier, UnknownProviderError
from ticket_swarm.models import (
    ParsedOutput,
    ProviderInvocation,
    ProviderKind,
    StructuredEvent,
)
from ticket_swarm.providers.stream import iter_text_events


class ProviderAdapter(Protocol):
    """Capability interface every provider adapter implements."""

    kind: ProviderKind

    def command(self, settings: ProviderSettings) -> str:
        ...

    def build_invocation(self, prompt: str, settings: ProviderSettings) -> ProviderInvocation:
        ...

    def parse_output(self, raw_stdout: str, exit_code: int) -> ParsedOutput:
        ...

    def is_rate_limited(self, text: Optional[str]) -> bool:
        ...


def select_output(result_text: str, last_assistant_text: str) -> str:
    """Result-event text wins, then the last assistant text block, then empty."""
    return result_text or last_assistant_text or ""


class ClaudeAdapter:
    """Claude Code CLI using --output-format stream-json."""

    kind = ProviderKind.CLAUDE
    DEFAULT_MAX_TURNS = 30
    DEFAULT_MODEL = "haiku"

    def command(self, settings: ProviderSettings) -> str:
        return settings.binary or "claude"

    def build_invocation(self, prompt: str, settings: ProviderSettings) -> ProviderInvocation:
        max_turns = settings.max_turns or self.DEFAULT_MAX_TURNS
        model = settings.model or self.DEFAULT_MODEL

        args = [
            "-p", prompt,
            "--max-turns", str(max_turns),
            "--output-format", "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
            "--model", model,
        ]
        if settings.allowed_tools:
            args.extend(["--allowedTools", ",".join(settings.allowed_tools)])

        return ProviderInvocation(
            args=args,
            timeout_seconds=settings.timeout_seconds,
            turn_limit=max_turns,
        )

    def parse_output(self, raw_stdout: str, exit_code: int) -> ParsedOutput:
        """
        Walk the stream-json events and extract the final answer.

        Completion requires exit 0, a result event and non-empty result text.
        """
        last_assistant_text = ""
        result_text = ""
        num_turns: Optional[int] = None
        result_received = False

        for event in iter_text_events(raw_stdout or ""):
            if not isinstance(event, StructuredEvent):
                continue
            payload = event.payload

            if event.type == "assistant":
                message = payload.get("message") or {}
                for block in message.get("content") or []:
                    if isinstance(block, dict) and block.get("type") == "text":
                        last_assistant_text = block.get("text") or ""
            elif event.type == "result":
                result_received = True
                if payload.get("result"):
                    result_text = str(payload["result"])
                num_turns = payload.get("num_turns")

        return ParsedOutput(
            output=select_output(result_text, last_assistant_text),
            turn_count=num_turns,
            completed_normally=exit_code == 0 and result_received and len(result_text) > 0,
        )

    def is_rate_limited(self, text: Optional[str]) -> bool:
        return RateLimitClassifier.matches_any(text, RateLimitClassifier.CLAUDE_SIGNATURES)


class CodexAdapter:
    """Codex CLI in quiet, full-auto mode. Output is plain text."""

    kind = ProviderKind.CODEX

    def command(self, settings: ProviderSettings) -> str:
        return settings.binary or "codex"

    def build_invocation(self, prompt: str, settings: ProviderSettings) -> ProviderInvocation:
        args = [
            "--quiet",
            "--prompt", prompt,
            "--approval-mode", "full-auto",
        ]
        if settings.model:
            args.extend(["--model", settings.model])

        # Codex has no turn concept
        return ProviderInvocation(
            args=args,
            timeout_seconds=settings.timeout_seconds,
            turn_limit=None,
        )

    def parse_output(self, raw_stdout: str, exit_code: int) -> ParsedOutput:
        raw_stdout = raw_stdout or ""
        return ParsedOutput(
            output=raw_stdout,
            turn_count=None,
            completed_normally=exit_code == 0 and len(raw_stdout.strip()) > 0,
        )

    def is_rate_limited(self, text: Optional[str]) -> bool:
        return RateLimitClassifier.matches_any(text, RateLimitClassifier.CODEX_SIGNATURES)


_ADAPTERS: dict[ProviderKind, ProviderAdapter] = {
    ProviderKind.CLAUDE: ClaudeAdapter(),
    ProviderKind.CODEX: CodexAdapter(),
}


def get_adapter(kind: ProviderKind) -> ProviderAdapter:
    """
    Get the adapter for a provider.

    Raises:
        UnknownProviderError: If no adapter exists for the provider.
    """
    adapter = _ADAPTERS.get(kind)
    if adapter is None:
        raise UnknownProviderError(getattr(kind, "value", str(kind)))
    return adapter


def check_provider_available(kind: ProviderKind, settings: Optional[ProviderSettings] = None) -> bool:
    """Check whether a provider's CLI binary is on PATH."""
    adapter = _ADAPTERS.get(kind)
    if adapter is None:
        return False
    binary = adapter.command(settings) if settings is not None else kind.value
    return shutil.which(binary) is not None
