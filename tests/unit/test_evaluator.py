"""Tests for the structural pre-check, verdict parsing and the Evaluator."""

from unittest.mock import MagicMock, patch

import pytest

from conftest import GOOD_TRANSCRIPT, make_result
from ticket_swarm.debate.evaluator import (
    Evaluator,
    extract_cheatsheet,
    extract_feedback,
    parse_verdict,
    structural_check,
)
from ticket_swarm.errors import SpawnTimeoutError

CHEATSHEET = (
    "## Files\n- src/webhooks/handler.ts: wrap upstream call in retry()\n"
    "## Steps\n1. Add retry helper\n2. Use it in the handler\n3. Add tests for the retry path\n"
)
APPROVAL = f"APPROVED\n\n=== CHEATSHEET START ===\n{CHEATSHEET}\n=== CHEATSHEET END ==="


class TestStructuralCheck:

    def test_passes_good_transcript(self):
        assert structural_check(GOOD_TRANSCRIPT).passed is True

    def test_too_short(self):
        result = structural_check("Modify src/a.ts and src/b.ts. Add. Update.")
        assert result.passed is False
        assert result.feedback == "Debate output too short (< 200 chars)"

    def test_empty(self):
        assert structural_check("").passed is False
        assert structural_check(None).passed is False

    def test_too_few_file_paths(self):
        text = "Modify the handler. Add a retry. Update the tests. " * 10 + "See src/a.ts"
        result = structural_check(text)
        assert result.feedback == "Debate output mentions fewer than 2 file paths"

    def test_too_few_action_verbs(self):
        text = "We looked at src/a.ts and src/b.ts carefully. " * 10
        result = structural_check(text)
        assert result.feedback == "Debate output lacks actionable language (fewer than 3 action verbs)"

    def test_is_idempotent(self):
        assert structural_check(GOOD_TRANSCRIPT) == structural_check(GOOD_TRANSCRIPT)


class TestParseVerdict:

    def test_approved_with_delimited_cheatsheet(self):
        result = parse_verdict(APPROVAL, GOOD_TRANSCRIPT, force=False)
        assert result.passed is True
        assert result.cheatsheet == CHEATSHEET.strip()

    def test_approved_without_extractable_cheatsheet_uses_transcript(self):
        result = parse_verdict("APPROVED", GOOD_TRANSCRIPT, force=False)
        assert result.passed is True
        assert result.cheatsheet == GOOD_TRANSCRIPT

    def test_rejected_with_feedback_marker(self):
        output = "REJECTED\n\n=== FEEDBACK ===\nName the files to change."
        result = parse_verdict(output, GOOD_TRANSCRIPT, force=False)
        assert result.passed is False
        assert result.feedback == "Name the files to change."

    def test_rejected_without_marker(self):
        result = parse_verdict("REJECTED too vague", GOOD_TRANSCRIPT, force=False)
        assert result.feedback == "too vague"

    def test_rejected_bare(self):
        result = parse_verdict("REJECTED", GOOD_TRANSCRIPT, force=False)
        assert result.feedback == "Evaluator rejected without specific feedback"

    def test_ambiguous(self):
        result = parse_verdict("I am not sure", GOOD_TRANSCRIPT, force=False)
        assert result.passed is False
        assert result.feedback == "Evaluator produced ambiguous response"

    def test_forced_ignores_rejection(self):
        result = parse_verdict("REJECTED\n=== FEEDBACK ===\nbad", GOOD_TRANSCRIPT, force=True)
        assert result.passed is True
        assert result.cheatsheet == GOOD_TRANSCRIPT

    def test_forced_extracts_block(self):
        output = f"=== CHEATSHEET START ===\n{CHEATSHEET}\n=== CHEATSHEET END ==="
        result = parse_verdict(output, GOOD_TRANSCRIPT, force=True)
        assert result.cheatsheet == CHEATSHEET.strip()

    def test_extract_helpers_return_none(self):
        assert extract_cheatsheet("nothing here") is None
        assert extract_feedback("nothing here") is None

    def test_text_after_approved(self):
        long_text = "x" * 150
        assert extract_cheatsheet(f"APPROVED {long_text}") == long_text


class TestEvaluator:

    @pytest.fixture
    def evaluator(self, tmp_config, tmp_path):
        return Evaluator(tmp_config(), working_dir=tmp_path)

    def test_structural_reject_skips_judge(self, evaluator):
        with patch("ticket_swarm.debate.evaluator.run_ai") as run_ai:
            result = evaluator.evaluate("too short", "# Ticket")
        assert result.passed is False
        run_ai.assert_not_called()

    def test_judge_approval(self, evaluator):
        with patch("ticket_swarm.debate.evaluator.run_ai", return_value=make_result(APPROVAL)) as run_ai:
            result = evaluator.evaluate(GOOD_TRANSCRIPT, "# Ticket", ticket_key="PROJ-1")

        assert result.passed is True
        assert result.cheatsheet == CHEATSHEET.strip()
        request = run_ai.call_args.args[0]
        assert request.label == "evaluator"
        assert request.mode.value == "evaluate"
        assert request.ticket_key == "PROJ-1"

    def test_forced_skips_structural_check(self, evaluator):
        with patch("ticket_swarm.debate.evaluator.run_ai", return_value=make_result("whatever")) as run_ai:
            result = evaluator.evaluate("short", "# Ticket", force=True)

        assert run_ai.call_args.args[0].label == "evaluator-force"
        assert result.passed is True
        assert result.cheatsheet == "short"

    def test_worker_error_rejects(self, evaluator):
        with patch(
            "ticket_swarm.debate.evaluator.run_ai",
            side_effect=SpawnTimeoutError("claude (evaluator) timed out after 300s", 300, 300),
        ):
            result = evaluator.evaluate(GOOD_TRANSCRIPT, "# Ticket")
        assert result.passed is False
        assert result.feedback.startswith("Evaluator error: ")

    def test_forced_worker_error_uses_transcript(self, evaluator):
        with patch(
            "ticket_swarm.debate.evaluator.run_ai",
            side_effect=SpawnTimeoutError("timed out", 300, 300),
        ):
            result = evaluator.evaluate(GOOD_TRANSCRIPT, "# Ticket", force=True)
        assert result.passed is True
        assert result.cheatsheet == GOOD_TRANSCRIPT
        assert result.feedback == "Evaluator failed, using raw debate output"

    def test_forced_unexpected_error_yields_no_plan(self, evaluator):
        with patch("ticket_swarm.debate.evaluator.run_ai", side_effect=RuntimeError("boom")):
            result = evaluator.evaluate(GOOD_TRANSCRIPT, "# Ticket", force=True)
        assert result.passed is False
        assert result.cheatsheet is None

    def test_unexpected_error_propagates_when_not_forced(self, evaluator):
        with patch("ticket_swarm.debate.evaluator.run_ai", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                evaluator.evaluate(GOOD_TRANSCRIPT, "# Ticket")

    def test_logs_completion(self, tmp_config, tmp_path):
        run_logger = MagicMock()
        evaluator = Evaluator(tmp_config(), logger=run_logger, working_dir=tmp_path)
        with patch("ticket_swarm.debate.evaluator.run_ai", return_value=make_result(APPROVAL)):
            evaluator.evaluate(GOOD_TRANSCRIPT, "# Ticket")

        event_types = [c.args[0] for c in run_logger.log.call_args_list]
        assert "evaluation_complete" in event_types
