"""Tests for the Claude and Codex adapters."""

import json

import pytest

from ticket_swarm.config import ProviderSettings
from ticket_swarm.errors import UnknownProviderError
from ticket_swarm.models import ProviderKind
from ticket_swarm.providers.adapters import (
    ClaudeAdapter,
    CodexAdapter,
    check_provider_available,
    get_adapter,
    select_output,
)


def _stream(*events: dict) -> str:
    return "\n".join(json.dumps(e) for e in events) + "\n"


def _assistant(text: str) -> dict:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


class TestClaudeInvocation:

    def test_arguments(self):
        settings = ProviderSettings(
            binary="claude", model="sonnet", max_turns=15,
            timeout_minutes=10, allowed_tools=("Read", "Glob", "Grep"),
        )
        invocation = ClaudeAdapter().build_invocation("Plan it", settings)

        assert invocation.args == [
            "-p", "Plan it",
            "--max-turns", "15",
            "--output-format", "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
            "--model", "sonnet",
            "--allowedTools", "Read,Glob,Grep",
        ]
        assert invocation.timeout_seconds == 600
        assert invocation.turn_limit == 15

    def test_defaults_without_model_or_tools(self):
        invocation = ClaudeAdapter().build_invocation("x", ProviderSettings(binary="claude"))
        assert invocation.args[invocation.args.index("--max-turns") + 1] == "30"
        assert invocation.args[invocation.args.index("--model") + 1] == "haiku"
        assert "--allowedTools" not in invocation.args

    def test_command_uses_configured_binary(self):
        assert ClaudeAdapter().command(ProviderSettings(binary="/opt/claude")) == "/opt/claude"


class TestClaudeParseOutput:

    def test_result_text_wins(self):
        raw = _stream(
            _assistant("thinking"),
            {"type": "result", "result": "final answer", "num_turns": 3},
        )
        parsed = ClaudeAdapter().parse_output(raw, 0)
        assert parsed.output == "final answer"
        assert parsed.turn_count == 3
        assert parsed.completed_normally is True

    def test_falls_back_to_last_assistant_text(self):
        raw = _stream(_assistant("first"), _assistant("second"))
        parsed = ClaudeAdapter().parse_output(raw, 0)
        assert parsed.output == "second"
        assert parsed.completed_normally is False

    def test_empty_result_text_is_not_complete(self):
        raw = _stream(_assistant("partial"), {"type": "result", "result": ""})
        parsed = ClaudeAdapter().parse_output(raw, 0)
        assert parsed.output == "partial"
        assert parsed.completed_normally is False

    def test_nonzero_exit_is_not_complete(self):
        raw = _stream({"type": "result", "result": "done"})
        assert ClaudeAdapter().parse_output(raw, 1).completed_normally is False

    def test_raw_lines_are_ignored(self):
        raw = "warning: something\n" + _stream({"type": "result", "result": "ok"})
        assert ClaudeAdapter().parse_output(raw, 0).output == "ok"

    def test_empty_stdout(self):
        parsed = ClaudeAdapter().parse_output("", 0)
        assert parsed.output == ""
        assert parsed.completed_normally is False


class TestCodexAdapter:

    def test_arguments(self):
        settings = ProviderSettings(binary="codex", model="o4-mini", timeout_minutes=5)
        invocation = CodexAdapter().build_invocation("Fix it", settings)

        assert invocation.args == [
            "--quiet", "--prompt", "Fix it", "--approval-mode", "full-auto",
            "--model", "o4-mini",
        ]
        assert invocation.timeout_seconds == 300
        assert invocation.turn_limit is None

    def test_parse_output_is_plain_text(self):
        parsed = CodexAdapter().parse_output("All done\n", 0)
        assert parsed.output == "All done\n"
        assert parsed.completed_normally is True
        assert parsed.turn_count is None

    def test_whitespace_output_is_not_complete(self):
        assert CodexAdapter().parse_output("  \n", 0).completed_normally is False


class TestRateLimitSignatures:

    def test_claude_signature(self):
        assert ClaudeAdapter().is_rate_limited("You've hit your limit · resets 5pm")
        assert not ClaudeAdapter().is_rate_limited("all good")

    def test_codex_signature(self):
        assert CodexAdapter().is_rate_limited("Error: rate limit exceeded")
        assert not CodexAdapter().is_rate_limited(None)


class TestAdapterLookup:

    def test_get_adapter(self):
        assert isinstance(get_adapter(ProviderKind.CLAUDE), ClaudeAdapter)
        assert isinstance(get_adapter(ProviderKind.CODEX), CodexAdapter)

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            get_adapter("gemini")

    def test_select_output(self):
        assert select_output("a", "b") == "a"
        assert select_output("", "b") == "b"
        assert select_output("", "") == ""

    def test_check_provider_available(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: "/usr/bin/claude" if name == "claude" else None)
        assert check_provider_available(ProviderKind.CLAUDE) is True
        assert check_provider_available(ProviderKind.CODEX) is False
