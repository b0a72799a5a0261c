"""Tests for the pipeline orchestrator: run scenarios and resume."""

import itertools
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_result, make_ticket
from ticket_swarm.errors import CLINotFoundError, ResumeError, SpawnTimeoutError
from ticket_swarm.models import (
    CheatsheetOutcome,
    ExecutionValidation,
    PullRequest,
    TargetBranch,
    Ticket,
    TicketComment,
)
from ticket_swarm.pipeline import CloneResult, Pipeline, Step

ORCH = "ticket_swarm.pipeline.orchestrator"
EXEC_OUTPUT = "FILES CHANGED: src/handler.ts\nSUMMARY: added retry\nRISKS: none"


class FakeSourceControl:
    """Creates real clone directories so cleanup and reuse can be observed."""

    def __init__(self, root, push=True, pr=True):
        self.root = root
        self.push = push
        self.pr = pr
        self.clones = []
        self.cleaned = []
        self.prs = []
        self._ids = itertools.count(1)

    def clone(self, repo, base_branch, ticket, version=None):
        clone_dir = self.root / f"{repo}-{base_branch}-{next(self._ids)}"
        clone_dir.mkdir(parents=True)
        self.clones.append((repo, base_branch, version))
        return CloneResult(clone_dir=str(clone_dir), feature_branch=f"feature/{ticket.key}")

    def commit_and_push(self, clone_dir, feature_branch, ticket):
        return self.push

    def create_pull_request(self, clone_dir, feature_branch, base_branch, ticket, description):
        if not self.pr:
            return None
        self.prs.append((base_branch, description))
        return PullRequest(pr_id=str(len(self.prs)), pr_url=f"https://git/pr/{len(self.prs)}", base_branch=base_branch)

    def cleanup(self, clone_dir):
        self.cleaned.append(clone_dir)


@pytest.fixture
def tracker(ticket):
    tracker = MagicMock()
    tracker.fetch_ticket.return_value = ticket
    tracker.transition.return_value = True
    return tracker


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def source_control(tmp_path):
    return FakeSourceControl(tmp_path / "clones")


@pytest.fixture
def make_pipeline(tmp_config, tracker, source_control, notifier):
    def _make(**config_kwargs):
        return Pipeline(tmp_config(**config_kwargs), tracker, source_control, notifier)
    return _make


def approved(cheatsheet="PLAN: modify src/handler.ts"):
    return CheatsheetOutcome(status="approved", cheatsheet=cheatsheet, summary="Debate completed in 1 round(s)")


def valid():
    return ExecutionValidation(valid=True, changed_files=["src/handler.ts"])


def invalid(issue="No changes detected after execution (empty diff)"):
    return ExecutionValidation(valid=False, issues=[issue])


class TestPipelineHappyPath:

    def test_single_branch(self, make_pipeline, tracker, source_control, notifier):
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()) as build, \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.success is True
        assert [pr.pr_id for pr in report.pull_requests] == ["1"]
        assert report.pull_requests[0].service == "payments"
        assert report.pull_requests[0].version == "1.2.0"
        assert report.cheatsheet_summary == "Debate completed in 1 round(s)"
        assert report.run_id

        notifier.send_report.assert_called_once_with(report)
        build.assert_called_once()
        execute.assert_called_once()
        assert source_control.clones == [("payments-api", "main", "1.2.0")]
        assert source_control.prs == [("main", EXEC_OUTPUT)]
        assert len(source_control.cleaned) == 1

        statuses = [c.args[1] for c in tracker.transition.call_args_list]
        assert statuses == ["In Progress", "Review"]

    def test_checkpoint_cleared_but_cheatsheet_kept(self, make_pipeline):
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved("THE PLAN")), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            pipeline.run("PROJ-123")

        assert pipeline.store.load("PROJ-123") is None
        assert pipeline.store.load_cheatsheet("PROJ-123") == "THE PLAN"

    def test_branches_processed_in_order(self, make_pipeline, tracker, source_control):
        tracker.fetch_ticket.return_value = make_ticket(
            target_branches=[TargetBranch("main"), TargetBranch("release/1.2", version="1.2.1")],
        )
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()) as build, \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert [c[1] for c in source_control.clones] == ["main", "release/1.2"]
        assert [pr.base_branch for pr in report.pull_requests] == ["main", "release/1.2"]
        assert build.call_count == 2
        assert len(source_control.cleaned) == 2


class TestPipelineRejections:

    def test_validation_failure_sends_one_rejection(self, make_pipeline, tracker, source_control, notifier):
        tracker.fetch_ticket.return_value = make_ticket(affected_systems=["billing"])
        pipeline = make_pipeline()

        report = pipeline.run("PROJ-123")

        assert report.success is False
        assert report.reason == "validation_failed"
        assert report.errors == ["Unknown service: billing. Supported: payments, web"]
        notifier.send_report.assert_called_once()
        assert source_control.clones == []
        tracker.transition.assert_not_called()

    def test_cheatsheet_rejection_means_no_prs(self, make_pipeline, source_control, notifier):
        pipeline = make_pipeline()
        rejection = CheatsheetOutcome.rejected("Ticket has no summary", "early")

        with patch(f"{ORCH}.build_cheatsheet", return_value=rejection), \
                patch(f"{ORCH}.execute") as execute:
            report = pipeline.run("PROJ-123")

        assert report.success is False
        assert report.reason == "no_prs_created"
        assert report.failures[0].error == "Cheatsheet rejected: Ticket has no summary"
        execute.assert_not_called()
        assert len(source_control.cleaned) == 1
        notifier.send_report.assert_called_once()

    def test_no_changes_to_commit(self, make_pipeline, source_control):
        source_control.push = False
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.failures[0].error == "No changes to commit"

    def test_pr_creation_failed(self, make_pipeline, source_control):
        source_control.pr = False
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.failures[0].error == "PR creation failed"

    def test_failed_branch_keeps_checkpoint(self, make_pipeline):
        pipeline = make_pipeline()
        rejection = CheatsheetOutcome.rejected("Debate failed", "late")

        with patch(f"{ORCH}.build_cheatsheet", return_value=rejection):
            pipeline.run("PROJ-123")

        assert pipeline.store.load("PROJ-123").current_step is Step.CLONE_REPO


class TestExecuteRetries:

    def test_empty_output_retries_without_new_debate(self, make_pipeline):
        pipeline = make_pipeline(execution_retries=2)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()) as build, \
                patch(f"{ORCH}.execute", side_effect=[make_result(""), make_result(EXEC_OUTPUT)]) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.success is True
        assert execute.call_count == 2
        build.assert_called_once()

    def test_exhausted_empty_output(self, make_pipeline, source_control):
        pipeline = make_pipeline(execution_retries=2)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result("   ")) as execute, \
                patch(f"{ORCH}.validate_execution") as validate:
            report = pipeline.run("PROJ-123")

        assert execute.call_count == 2
        validate.assert_not_called()
        assert report.reason == "no_prs_created"
        assert report.failures[0].error == "Execution produced no output"
        assert source_control.prs == []

    def test_worker_error_counts_as_empty_attempt(self, make_pipeline):
        pipeline = make_pipeline(execution_retries=2)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", side_effect=[
                    SpawnTimeoutError("timed out", 900, 900), make_result(EXEC_OUTPUT),
                ]), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.success is True

    def test_invalid_result_retries_while_attempts_remain(self, make_pipeline):
        pipeline = make_pipeline(execution_retries=2)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", side_effect=[invalid(), valid()]):
            report = pipeline.run("PROJ-123")

        assert execute.call_count == 2
        assert report.success is True

    def test_last_attempt_used_regardless(self, make_pipeline, source_control):
        pipeline = make_pipeline(execution_retries=1)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=invalid("Possible debug log left in a.js: x")):
            report = pipeline.run("PROJ-123")

        execute.assert_called_once()
        assert report.success is True
        assert len(source_control.prs) == 1

    def test_execution_output_checkpoint_is_truncated(self, make_pipeline, source_control):
        source_control.push = False
        pipeline = make_pipeline()
        long_output = "x" * 8000

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(long_output)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            pipeline.run("PROJ-123")

        checkpoint = pipeline.store.load("PROJ-123")
        assert checkpoint.current_step is Step.VALIDATE_EXECUTION
        assert len(checkpoint.execution_output) == 5000

    def test_missing_cli_stops_retrying(self, make_pipeline, source_control):
        pipeline = make_pipeline(execution_retries=2)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", side_effect=CLINotFoundError("claude")) as execute, \
                patch(f"{ORCH}.validate_execution") as validate:
            report = pipeline.run("PROJ-123")

        execute.assert_called_once()
        validate.assert_not_called()
        assert report.reason == "no_prs_created"
        assert report.failures[0].error == "Execution failed: claude CLI not found. Please install it first."
        assert source_control.prs == []

    def test_execute_receives_ticket(self, make_pipeline):
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            pipeline.run("PROJ-123")

        assert execute.call_args.kwargs["ticket"].key == "PROJ-123"


class TestPipelineErrors:

    def test_unexpected_error_sends_one_failure_report(self, make_pipeline, tracker, notifier):
        tracker.fetch_ticket.side_effect = RuntimeError("tracker down")
        pipeline = make_pipeline()

        report = pipeline.run("PROJ-123")

        assert report.success is False
        assert report.reason == "error"
        assert report.errors == ["tracker down"]
        notifier.send_report.assert_called_once_with(report)

    def test_notifier_failure_does_not_send_twice(self, make_pipeline, notifier):
        notifier.send_report.side_effect = RuntimeError("chat down")
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.success is False
        assert notifier.send_report.call_count == 1

    def test_tracker_comment_failures_are_non_blocking(self, make_pipeline, tracker):
        tracker.post_progress.side_effect = RuntimeError("comment failed")
        tracker.transition.side_effect = RuntimeError("transition failed")
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.success is True

    def test_branch_exception_is_recorded_and_clone_cleaned(self, make_pipeline, source_control):
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", side_effect=RuntimeError("debate crashed")):
            report = pipeline.run("PROJ-123")

        assert report.reason == "no_prs_created"
        assert report.failures[0].error == "debate crashed"
        assert len(source_control.cleaned) == 1

    def test_run_log_written(self, make_pipeline, tmp_path):
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        logs = list((tmp_path / "logs").glob("PROJ-123-*.jsonl"))
        assert len(logs) == 1
        content = logs[0].read_text()
        assert '"run_start"' in content
        assert '"complexity_scored"' in content
        assert '"report_sent"' in content
        assert report.run_id in content


class TestDoneLabels:

    def _retriggered(self):
        return make_ticket(
            target_branches=[
                TargetBranch("main", version="1.2.0"),
                TargetBranch("release/1.1", version="1.1.0"),
            ],
            labels=["ticket-swarm-done-1.2.0", "ticket-swarm-done-1.1.0", "backend"],
            comments=[TicketComment(author="qa", text="1.2.0 is fine, 1.1.0 still failing")],
        )

    def test_success_adds_done_label_per_version(self, make_pipeline, tracker):
        tracker.fetch_ticket.return_value = make_ticket(affected_systems=["payments", "web"])
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert len(report.pull_requests) == 2
        tracker.add_label.assert_called_once_with("PROJ-123", "ticket-swarm-done-1.2.0")
        tracker.remove_label.assert_not_called()

    def test_no_done_label_without_prs(self, make_pipeline, tracker):
        pipeline = make_pipeline()
        rejection = CheatsheetOutcome.rejected("Debate failed", "late")

        with patch(f"{ORCH}.build_cheatsheet", return_value=rejection):
            pipeline.run("PROJ-123")

        tracker.add_label.assert_not_called()

    def test_label_failures_are_non_blocking(self, make_pipeline, tracker):
        tracker.add_label.side_effect = RuntimeError("label failed")
        pipeline = make_pipeline()

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert report.success is True

    def test_retriggered_ticket_processes_reworked_versions(
        self, make_pipeline, tracker, source_control, tmp_path
    ):
        tracker.fetch_ticket.return_value = self._retriggered()
        pipeline = make_pipeline()
        reply = make_result('{"versionsToProcess": ["1.1.0"], "reasoning": "1.1.0 failing"}')

        with patch("ticket_swarm.retrigger.run_ai", return_value=reply), \
                patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.run("PROJ-123")

        assert source_control.clones == [("payments-api", "release/1.1", "1.1.0")]
        assert [pr.version for pr in report.pull_requests] == ["1.1.0"]
        tracker.remove_label.assert_called_once_with("PROJ-123", "ticket-swarm-done-1.1.0")
        tracker.add_label.assert_called_once_with("PROJ-123", "ticket-swarm-done-1.1.0")

        content = next((tmp_path / "logs").glob("PROJ-123-*.jsonl")).read_text()
        assert '"retrigger_detected"' in content

    def test_narrowed_ticket_is_checkpointed(self, make_pipeline, tracker):
        tracker.fetch_ticket.return_value = self._retriggered()
        pipeline = make_pipeline()
        reply = make_result('{"versionsToProcess": ["1.1.0"]}')
        rejection = CheatsheetOutcome.rejected("Debate failed", "late")

        with patch("ticket_swarm.retrigger.run_ai", return_value=reply), \
                patch(f"{ORCH}.build_cheatsheet", return_value=rejection):
            pipeline.run("PROJ-123")

        saved = Ticket.from_dict(pipeline.store.load("PROJ-123").ticket_data)
        assert [b.branch for b in saved.branches()] == ["release/1.1"]
        assert saved.labels == ["ticket-swarm-done-1.2.0", "backend"]

    def test_resume_does_not_reevaluate_retrigger(self, make_pipeline, tracker):
        pipeline = make_pipeline()
        ticket = self._retriggered()
        pipeline.store.save("PROJ-123", Step.VALIDATE_TICKET, {"ticket_data": ticket.to_dict()})

        with patch(f"{ORCH}.detect_retrigger") as detect, \
                patch(f"{ORCH}.build_cheatsheet", return_value=CheatsheetOutcome.rejected("no", "late")):
            pipeline.resume("PROJ-123", Step.CLONE_REPO)

        detect.assert_not_called()
        tracker.remove_label.assert_not_called()


class TestResume:

    def _checkpoint(self, pipeline, step, clone_dir=None, cheatsheet="PLAN", branch="main", ticket=None, **extra):
        ticket = ticket or make_ticket()
        data = {
            "ticket_data": ticket.to_dict(),
            "clone_dir": str(clone_dir) if clone_dir else None,
            "feature_branch": "feature/PROJ-123" if clone_dir else None,
            "service_name": "payments",
            "branch_name": branch,
            **extra,
        }
        if cheatsheet:
            data["cheatsheet"] = cheatsheet
        pipeline.store.save("PROJ-123", step, data)

    def test_no_checkpoint(self, make_pipeline):
        with pytest.raises(ResumeError, match="No checkpoint found for PROJ-123"):
            make_pipeline().resume("PROJ-123", Step.EXECUTE)

    def test_execute_without_cheatsheet(self, make_pipeline):
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.CLONE_REPO, cheatsheet=None)
        with pytest.raises(ResumeError, match="no cheatsheet"):
            pipeline.resume("PROJ-123", "EXECUTE")

    def test_missing_ticket_data(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.store.save("PROJ-123", Step.FETCH_TICKET, {})
        with pytest.raises(ResumeError, match="insufficient checkpoint data"):
            pipeline.resume("PROJ-123", Step.CLONE_REPO)

    def test_reuses_existing_clone(self, make_pipeline, tracker, source_control, tmp_path):
        clone_dir = tmp_path / "old-clone"
        clone_dir.mkdir()
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.BUILD_CHEATSHEET, clone_dir=clone_dir, cheatsheet="SAVED PLAN")

        with patch(f"{ORCH}.build_cheatsheet") as build, \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.resume("PROJ-123", Step.EXECUTE)

        assert report.success is True
        tracker.fetch_ticket.assert_not_called()
        build.assert_not_called()
        assert source_control.clones == []
        assert execute.call_args.args[0] == "SAVED PLAN"
        assert execute.call_args.args[1] == str(clone_dir)
        assert source_control.cleaned == [str(clone_dir)]

    def test_reclones_when_clone_is_gone(self, make_pipeline, source_control, tmp_path):
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.EXECUTE, clone_dir=tmp_path / "gone", cheatsheet="SAVED PLAN")

        with patch(f"{ORCH}.build_cheatsheet") as build, \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.resume("PROJ-123", Step.SHIP)

        assert report.success is True
        assert len(source_control.clones) == 1
        build.assert_not_called()
        # Restarted at EXECUTE on the fresh clone
        execute.assert_called_once()

    def test_reclone_without_cheatsheet_rebuilds(self, make_pipeline, source_control, tmp_path):
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.CLONE_REPO, clone_dir=tmp_path / "gone", cheatsheet=None)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()) as build, \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            pipeline.resume("PROJ-123", Step.BUILD_CHEATSHEET)

        build.assert_called_once()

    def test_only_checkpointed_branch_and_after(self, make_pipeline, source_control, tmp_path):
        ticket = make_ticket(target_branches=[
            TargetBranch("main"), TargetBranch("release/1"), TargetBranch("release/2"),
        ])
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.CLONE_REPO, branch="release/1", ticket=ticket)

        with patch(f"{ORCH}.build_cheatsheet", return_value=approved()), \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)), \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.resume("PROJ-123", Step.EXECUTE)

        assert [c[1] for c in source_control.clones] == ["release/1", "release/2"]
        assert [pr.base_branch for pr in report.pull_requests] == ["release/1", "release/2"]

    def test_resume_from_ship_skips_execution(self, make_pipeline, source_control, tmp_path):
        clone_dir = tmp_path / "old-clone"
        clone_dir.mkdir()
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.VALIDATE_EXECUTION, clone_dir=clone_dir)

        with patch(f"{ORCH}.execute") as execute:
            report = pipeline.resume("PROJ-123", Step.SHIP)

        execute.assert_not_called()
        assert report.success is True
        assert source_control.prs[0][1] == "PLAN"

    def test_crashed_resume_keeps_branch_checkpoint(self, make_pipeline, tmp_path):
        clone_dir = tmp_path / "old-clone"
        clone_dir.mkdir()
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.EXECUTE, clone_dir=clone_dir, cheatsheet="SAVED PLAN")

        with patch(f"{ORCH}.build_cheatsheet") as build, \
                patch(f"{ORCH}.execute", side_effect=RuntimeError("worker crashed")):
            first = pipeline.resume("PROJ-123", Step.EXECUTE)

        assert first.success is False
        build.assert_not_called()
        checkpoint = pipeline.store.load("PROJ-123")
        assert checkpoint.current_step is Step.EXECUTE
        assert checkpoint.service_name == "payments"
        assert checkpoint.clone_dir == str(clone_dir)

        with patch(f"{ORCH}.build_cheatsheet") as build, \
                patch(f"{ORCH}.execute", return_value=make_result(EXEC_OUTPUT)) as execute, \
                patch(f"{ORCH}.validate_execution", return_value=valid()):
            report = pipeline.resume("PROJ-123", Step.EXECUTE)

        assert report.success is True
        build.assert_not_called()
        assert execute.call_args.args[0] == "SAVED PLAN"

    def test_restart_from_validate_ticket_resets_checkpoint(self, make_pipeline, tmp_path):
        pipeline = make_pipeline()
        self._checkpoint(pipeline, Step.EXECUTE, clone_dir=tmp_path / "gone")

        with patch(f"{ORCH}.build_cheatsheet", side_effect=RuntimeError("debate crashed")):
            pipeline.resume("PROJ-123", Step.VALIDATE_TICKET)

        assert pipeline.store.load("PROJ-123").current_step is Step.CLONE_REPO

    def test_resume_from_notify_reports_without_reshipping(
        self, make_pipeline, source_control, notifier, tmp_path
    ):
        clone_dir = tmp_path / "old-clone"
        clone_dir.mkdir()
        pipeline = make_pipeline()
        shipped = PullRequest(pr_id="7", pr_url="https://git/pr/7", base_branch="main", service="payments")
        self._checkpoint(pipeline, Step.SHIP, clone_dir=clone_dir, all_prs=[shipped.to_dict()])

        with patch(f"{ORCH}.build_cheatsheet") as build, \
                patch(f"{ORCH}.execute") as execute:
            report = pipeline.resume("PROJ-123", Step.NOTIFY)

        assert report.success is True
        assert [pr.pr_id for pr in report.pull_requests] == ["7"]
        assert source_control.clones == []
        assert source_control.prs == []
        build.assert_not_called()
        execute.assert_not_called()
        notifier.send_report.assert_called_once_with(report)
        assert pipeline.store.load("PROJ-123") is None

    def test_reshipping_replaces_checkpointed_pr(self, make_pipeline, source_control, tmp_path):
        clone_dir = tmp_path / "old-clone"
        clone_dir.mkdir()
        pipeline = make_pipeline()
        shipped = PullRequest(pr_id="7", pr_url="https://git/pr/7", base_branch="main", service="payments")
        self._checkpoint(pipeline, Step.SHIP, clone_dir=clone_dir, all_prs=[shipped.to_dict()])

        report = pipeline.resume("PROJ-123", Step.SHIP)

        assert len(source_control.prs) == 1
        assert [(pr.service, pr.base_branch, pr.pr_id) for pr in report.pull_requests] == [
            ("payments", "main", "1"),
        ]
