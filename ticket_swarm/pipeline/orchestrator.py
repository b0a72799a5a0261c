"""
Pipeline orchestrator.

Runs the fixed step sequence for a ticket:
    1 FETCH_TICKET and 2 VALIDATE_TICKET once,
    3 CLONE_REPO .. 7 SHIP once per (service, branch), strictly in order,
    8 NOTIFY once.

Every completed step transition is checkpointed so a crashed run can be
resumed. Every run ends with exactly one outward report, whatever happens.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Union

from ticket_swarm.complexity import score_complexity
from ticket_swarm.config import ServiceConfig
from ticket_swarm.debate.builder import build_cheatsheet
from ticket_swarm.errors import LLMError, ResumeError
from ticket_swarm.executor import execute
from ticket_swarm.logger import RunLogger
from ticket_swarm.models import (
    BranchFailure,
    BranchResult,
    InvocationResult,
    PullRequest,
    RunReport,
    TargetBranch,
    Ticket,
)
from ticket_swarm.pipeline.checkpoint import Checkpoint, CheckpointStore
from ticket_swarm.pipeline.collaborators import (
    CloneResult,
    Notifier,
    SourceControl,
    TicketTracker,
)
from ticket_swarm.pipeline.steps import Step
from ticket_swarm.providers.strategies import provider_label
from ticket_swarm.retrigger import detect_retrigger, done_label_for
from ticket_swarm.utils.fs import dir_exists
from ticket_swarm.validation import validate_execution, validate_ticket

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.providers.strategies import ProviderInvoker

logger = logging.getLogger(__name__)

EXECUTION_OUTPUT_LIMIT = 5000
STATUS_IN_PROGRESS = "In Progress"
STATUS_REVIEW = "Review"


@dataclass
class _RunContext:
    """Mutable bookkeeping for one pipeline run."""
    ticket_key: str
    run_id: str
    log: RunLogger
    ticket: Optional[Ticket] = None
    all_prs: list[PullRequest] = field(default_factory=list)
    all_failures: list[BranchFailure] = field(default_factory=list)
    cheatsheet_summary: str = ""
    report_sent: bool = False


@dataclass
class _ResumePlan:
    """Where a resumed run picks up."""
    ticket: Ticket
    start_index: int = 0
    start_step: Step = Step.CLONE_REPO
    clone: Optional[CloneResult] = None
    cheatsheet: Optional[str] = None
    execution_output: Optional[str] = None
    all_prs: list[PullRequest] = field(default_factory=list)
    all_failures: list[BranchFailure] = field(default_factory=list)
    keeps_checkpoint: bool = False  # Checkpoint already holds branch progress
    notify_only: bool = False


@dataclass
class _WorkItem:
    service_name: str
    service: Optional[ServiceConfig]
    target: TargetBranch


def _new_run_id(ticket_key: str) -> str:
    return f"{ticket_key}-{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%f')}"


def _with_pr(prs: list[PullRequest], pr: PullRequest) -> list[PullRequest]:
    """Add a PR, replacing any earlier one for the same (service, branch)."""
    kept = [p for p in prs if (p.service, p.base_branch) != (pr.service, pr.base_branch)]
    return kept + [pr]


class Pipeline:
    """
    Ticket-to-pull-request pipeline.

    Collaborators own parsing, git and network I/O; the pipeline owns step
    order, checkpoints, retries and the final report.
    """

    def __init__(
        self,
        config: TicketSwarmConfig,
        tracker: TicketTracker,
        source_control: SourceControl,
        notifier: Notifier,
        store: Optional[CheckpointStore] = None,
        invoker: Optional[ProviderInvoker] = None,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self.source_control = source_control
        self.notifier = notifier
        self.store = store or CheckpointStore(config.state_path)
        self._invoker = invoker

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, ticket_key: str) -> RunReport:
        """
        Run the full pipeline for a ticket. Never raises.

        Returns:
            The single report sent for this run.
        """
        return self._guarded_run(ticket_key, None)

    def resume(self, ticket_key: str, from_step: Union[Step, str, int]) -> RunReport:
        """
        Resume a run from its checkpoint.

        The saved ticket data is reused and only the checkpointed
        (service, branch) and those after it are processed. Resuming from
        NOTIFY only reports the pull requests already in the checkpoint.

        Raises:
            ResumeError: If there is no checkpoint, no cheatsheet for a
                step at or after EXECUTE, or no ticket data.
        """
        plan = self._plan_resume(ticket_key, Step.from_value(from_step))
        return self._guarded_run(ticket_key, plan)

    # ------------------------------------------------------------------
    # Logging and collaborator helpers
    # ------------------------------------------------------------------

    def _start_step(self, ctx: _RunContext, step: Step, detail: str = "") -> None:
        logger.info("[%s] Step %d/%d: %s %s", ctx.ticket_key, step.number, len(Step), step.description, detail)
        ctx.log.info("step_start", {"step": step.name, "number": step.number, "detail": detail})

    def _end_step(self, ctx: _RunContext, step: Step, success: bool, message: str) -> None:
        if success:
            logger.info("[%s] %s complete: %s", ctx.ticket_key, step.name, message)
        else:
            logger.warning("[%s] %s failed: %s", ctx.ticket_key, step.name, message)
        ctx.log.log(
            "step_end",
            {"step": step.name, "success": success, "message": message},
            level="info" if success else "warn",
        )
        self._post_progress(ctx, f"Step {step.number}: {step.description}", message)

    def _post_progress(self, ctx: _RunContext, title: str, body: str) -> None:
        """Tracker progress comments never block the run."""
        try:
            self.tracker.post_progress(ctx.ticket_key, title, body)
        except Exception as e:
            logger.warning("[%s] Progress comment failed (non-blocking): %s", ctx.ticket_key, e)

    def _transition(self, ctx: _RunContext, status: str) -> None:
        try:
            if self.tracker.transition(ctx.ticket_key, status):
                logger.info("[%s] Transitioned to %s", ctx.ticket_key, status)
        except Exception as e:
            logger.warning("[%s] %s transition failed (non-blocking): %s", ctx.ticket_key, status, e)

    def _update_label(self, ctx: _RunContext, label: str, add: bool) -> None:
        try:
            if add:
                self.tracker.add_label(ctx.ticket_key, label)
            else:
                self.tracker.remove_label(ctx.ticket_key, label)
            logger.info("[%s] %s label %s", ctx.ticket_key, "Added" if add else "Removed", label)
        except Exception as e:
            logger.warning("[%s] Label %s update failed (non-blocking): %s", ctx.ticket_key, label, e)

    def _deliver(self, ctx: _RunContext, report: RunReport) -> RunReport:
        """Send the run's report; only the first report of a run goes out."""
        if ctx.report_sent:
            return report
        ctx.report_sent = True
        report.run_id = ctx.run_id
        ctx.log.info("report_sent", report.to_dict())
        self.notifier.send_report(report)
        return report

    def _save(self, ctx: _RunContext, step: Step, data: Optional[dict[str, Any]] = None) -> Checkpoint:
        fields = dict(data or {})
        if ctx.ticket is not None:
            fields.setdefault("ticket_data", ctx.ticket.to_dict())
        fields.setdefault("all_prs", [pr.to_dict() for pr in ctx.all_prs])
        fields.setdefault("all_failures", [f.to_dict() for f in ctx.all_failures])
        return self.store.save(ctx.ticket_key, step, fields)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _guarded_run(self, ticket_key: str, plan: Optional[_ResumePlan]) -> RunReport:
        run_logger = RunLogger(ticket_key, self.config.agent.log_dir)
        ctx = _RunContext(ticket_key=ticket_key, run_id=_new_run_id(ticket_key), log=run_logger)
        logger.info(
            "Processing: %s (Run ID: %s, provider: %s)",
            ticket_key, ctx.run_id, provider_label(self.config),
        )

        with run_logger.run_context(ctx.run_id):
            try:
                return self._run_steps(ctx, plan)
            except Exception as e:
                logger.exception("Error processing %s", ticket_key)
                run_logger.error("pipeline_error", {
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                })
                report = RunReport(
                    ticket_key=ticket_key,
                    success=False,
                    reason="error",
                    errors=[str(e)],
                    pull_requests=list(ctx.all_prs),
                    failures=list(ctx.all_failures),
                    run_id=ctx.run_id,
                )
                if not ctx.report_sent:
                    try:
                        self._deliver(ctx, report)
                    except Exception:
                        logger.exception("Failed to send failure report for %s", ticket_key)
                return report

    def _run_steps(self, ctx: _RunContext, plan: Optional[_ResumePlan]) -> RunReport:
        if plan is None:
            self._start_step(ctx, Step.FETCH_TICKET)
            ctx.ticket = self.tracker.fetch_ticket(ctx.ticket_key)
            self._save(ctx, Step.FETCH_TICKET)
            self._end_step(ctx, Step.FETCH_TICKET, True, f"Ticket fetched: {ctx.ticket.summary[:50]}")
        else:
            ctx.ticket = plan.ticket
            ctx.all_prs = list(plan.all_prs)
            ctx.all_failures = list(plan.all_failures)
            logger.info("[%s] Reusing ticket data from checkpoint", ctx.ticket_key)

        ticket = ctx.ticket

        self._start_step(ctx, Step.VALIDATE_TICKET)
        errors = validate_ticket(ticket, self.config)
        if errors:
            for error in errors:
                logger.warning("[%s] Validation failed: %s", ctx.ticket_key, error)
            self._end_step(ctx, Step.VALIDATE_TICKET, False, "; ".join(errors))
            return self._deliver(ctx, RunReport(
                ticket_key=ctx.ticket_key,
                success=False,
                reason="validation_failed",
                errors=errors,
            ))
        if plan is None:
            ticket = self._apply_retrigger(ctx)
        complexity = score_complexity(ticket)
        ctx.log.info("complexity_scored", complexity.to_dict())
        logger.info("[%s] Complexity: %s (score %d)", ctx.ticket_key, complexity.level, complexity.score)

        if plan is None or not plan.keeps_checkpoint:
            self._save(ctx, Step.VALIDATE_TICKET)
        self._end_step(ctx, Step.VALIDATE_TICKET, True, "All required fields present")
        self._transition(ctx, STATUS_IN_PROGRESS)

        if plan is not None and plan.notify_only:
            logger.info(
                "[%s] Skipping branch processing, %d PR(s) from checkpoint",
                ctx.ticket_key, len(ctx.all_prs),
            )
            return self._notify(ctx)

        items = self._work_items(ticket)
        start_index = plan.start_index if plan else 0

        for index, item in enumerate(items):
            if index < start_index:
                continue
            resuming = plan is not None and index == start_index
            if item.service is None:
                ctx.all_failures.append(BranchFailure(
                    service=item.service_name,
                    base_branch="all",
                    error=f"Unknown service: {item.service_name}",
                ))
                continue

            logger.info("--- Processing %s / %s ---", item.service_name, item.target.branch)
            try:
                result = self._process_branch(ctx, item, plan if resuming else None)
            except Exception as e:
                logger.exception("Failed to process %s/%s", item.service_name, item.target.branch)
                result = BranchResult(
                    service=item.service_name, base_branch=item.target.branch, error=str(e)
                )

            if result.pull_request is not None:
                ctx.all_prs = _with_pr(ctx.all_prs, result.pull_request)
            elif result.error:
                ctx.all_failures.append(BranchFailure(
                    service=item.service_name,
                    base_branch=item.target.branch,
                    error=result.error,
                ))
            if result.cheatsheet_summary and not ctx.cheatsheet_summary:
                ctx.cheatsheet_summary = result.cheatsheet_summary

        return self._notify(ctx)

    def _apply_retrigger(self, ctx: _RunContext) -> Ticket:
        """Narrow a re-triggered ticket to the versions that need rework."""
        ticket = ctx.ticket
        retrigger = detect_retrigger(ticket, self.config, invoker=self._invoker, run_logger=ctx.log)
        if not retrigger.is_retrigger:
            return ticket

        ctx.log.info("retrigger_detected", retrigger.to_dict())
        for label in retrigger.stale_labels:
            self._update_label(ctx, label, add=False)

        labels = [label for label in ticket.labels if label not in retrigger.stale_labels]
        if retrigger.branches is None:
            logger.info("[%s] Re-trigger: processing all versions", ctx.ticket_key)
            ctx.ticket = replace(ticket, labels=labels)
        else:
            logger.info(
                "[%s] Re-trigger: processing %s (%s)",
                ctx.ticket_key,
                ", ".join(b.branch for b in retrigger.branches),
                retrigger.reasoning or "N/A",
            )
            ctx.ticket = replace(ticket, target_branches=retrigger.branches, labels=labels)
        return ctx.ticket

    def _work_items(self, ticket: Ticket) -> list[_WorkItem]:
        items: list[_WorkItem] = []
        for service_name in ticket.affected_systems:
            service = self.config.services.get(service_name)
            if service is None:
                items.append(_WorkItem(service_name, None, TargetBranch(branch="all")))
                continue
            for target in ticket.branches():
                items.append(_WorkItem(service_name, service, target))
        return items

    # ------------------------------------------------------------------
    # Steps 3-7
    # ------------------------------------------------------------------

    def _branch_state(self, item: _WorkItem, clone: CloneResult) -> dict[str, Any]:
        return {
            "clone_dir": clone.clone_dir,
            "feature_branch": clone.feature_branch,
            "service_name": item.service_name,
            "branch_name": item.target.branch,
        }

    def _process_branch(
        self,
        ctx: _RunContext,
        item: _WorkItem,
        plan: Optional[_ResumePlan],
    ) -> BranchResult:
        ticket = ctx.ticket
        start_step = plan.start_step if plan else Step.CLONE_REPO
        cheatsheet = plan.cheatsheet if plan else None
        clone: Optional[CloneResult] = plan.clone if plan else None
        base_branch = item.target.branch

        try:
            if clone is None:
                self._start_step(ctx, Step.CLONE_REPO, f"{item.service.repo} ({base_branch})")
                clone = self.source_control.clone(
                    item.service.repo, base_branch, ticket, item.target.version
                )
                self._save(ctx, Step.CLONE_REPO, self._branch_state(item, clone))
                self._end_step(ctx, Step.CLONE_REPO, True, f"Branch created: {clone.feature_branch}")
            else:
                logger.info("[%s] Reusing clone %s", ctx.ticket_key, clone.clone_dir)

            summary = ""
            if start_step <= Step.BUILD_CHEATSHEET or not cheatsheet:
                self._start_step(ctx, Step.BUILD_CHEATSHEET, f"{item.service.repo}/{base_branch}")
                outcome = build_cheatsheet(
                    ticket,
                    clone.clone_dir,
                    self.config,
                    checkpoint_dir=self.store.checkpoint_dir(ctx.ticket_key),
                    invoker=self._invoker,
                    run_logger=ctx.log,
                )
                if not outcome.approved:
                    self._end_step(
                        ctx, Step.BUILD_CHEATSHEET, False,
                        f"Rejected ({outcome.phase}): {outcome.reason}",
                    )
                    return BranchResult(
                        service=item.service_name,
                        base_branch=base_branch,
                        error=f"Cheatsheet rejected: {outcome.reason}",
                    )
                cheatsheet = outcome.cheatsheet
                summary = outcome.summary
                self._save(ctx, Step.BUILD_CHEATSHEET, {
                    **self._branch_state(item, clone),
                    "cheatsheet": cheatsheet,
                })
                self._end_step(ctx, Step.BUILD_CHEATSHEET, True, f"Cheatsheet ready ({len(cheatsheet)} chars)")
            else:
                summary = "Cheatsheet reused from checkpoint"

            execution_output = plan.execution_output if plan else None
            if start_step <= Step.EXECUTE:
                result, error = self._execute_with_retries(ctx, item, clone, cheatsheet)
                if error:
                    return BranchResult(
                        service=item.service_name,
                        base_branch=base_branch,
                        error=error,
                        cheatsheet_summary=summary,
                    )
                execution_output = result.output
            elif start_step == Step.VALIDATE_EXECUTION:
                self._validate(ctx, item, clone, 1, 1, execution_output)

            return self._ship(ctx, item, clone, cheatsheet, execution_output, summary)
        finally:
            if clone is not None:
                try:
                    self.source_control.cleanup(clone.clone_dir)
                except Exception as e:
                    logger.warning("[%s] Cleanup of %s failed: %s", ctx.ticket_key, clone.clone_dir, e)

    def _validate(
        self,
        ctx: _RunContext,
        item: _WorkItem,
        clone: CloneResult,
        attempt: int,
        attempts: int,
        execution_output: Optional[str],
    ) -> bool:
        """Step 6. Returns True when the caller should retry execution."""
        self._start_step(ctx, Step.VALIDATE_EXECUTION)
        validation = validate_execution(clone.clone_dir)
        ctx.log.info("execution_validated", {
            "attempt": attempt,
            "valid": validation.valid,
            "issues": validation.issues,
            "changed_files": validation.changed_files,
        })

        if not validation.valid and attempt < attempts:
            self._end_step(
                ctx, Step.VALIDATE_EXECUTION, False,
                f"Validation failed, retrying: {', '.join(validation.issues)}",
            )
            return True

        if validation.issues:
            logger.warning("[%s] Validation issues: %s", ctx.ticket_key, ", ".join(validation.issues))
        self._save(ctx, Step.VALIDATE_EXECUTION, {
            **self._branch_state(item, clone),
            "execution_output": (execution_output or "")[:EXECUTION_OUTPUT_LIMIT] or None,
        })
        self._end_step(
            ctx, Step.VALIDATE_EXECUTION, validation.valid,
            "Validation passed" if validation.valid else f"Issues: {', '.join(validation.issues)}",
        )
        return False

    def _execute_with_retries(
        self,
        ctx: _RunContext,
        item: _WorkItem,
        clone: CloneResult,
        cheatsheet: str,
    ) -> tuple[Optional[InvocationResult], Optional[str]]:
        """
        Steps 5-6 with the bounded retry loop.

        Empty output retries without a new debate. Invalid output retries
        while attempts remain; the last attempt is used regardless.
        """
        attempts = self.config.agent.execution_retries
        result: Optional[InvocationResult] = None

        for attempt in range(1, attempts + 1):
            self._start_step(ctx, Step.EXECUTE, f"attempt {attempt}/{attempts}")
            try:
                result = execute(
                    cheatsheet,
                    clone.clone_dir,
                    self.config,
                    ticket_key=ctx.ticket_key,
                    invoker=self._invoker,
                    run_logger=ctx.log,
                    ticket=ctx.ticket,
                )
            except LLMError as e:
                logger.warning("[%s] Execution attempt %d failed: %s", ctx.ticket_key, attempt, e)
                if e.requires_user_action:
                    self._end_step(ctx, Step.EXECUTE, False, str(e))
                    return None, f"Execution failed: {e}"
                result = None

            if result is None or not result.output.strip():
                self._end_step(ctx, Step.EXECUTE, False, f"Attempt {attempt} produced no output")
                if attempt < attempts:
                    continue
                return None, "Execution produced no output"

            self._save(ctx, Step.EXECUTE, {
                **self._branch_state(item, clone),
                "cheatsheet": cheatsheet,
                "execution_output": result.output[:EXECUTION_OUTPUT_LIMIT],
            })
            self._end_step(
                ctx, Step.EXECUTE, True,
                "Execution completed" if result.completed_normally else f"Exit code {result.exit_code}",
            )

            if self._validate(ctx, item, clone, attempt, attempts, result.output):
                continue
            break

        return result, None

    def _ship(
        self,
        ctx: _RunContext,
        item: _WorkItem,
        clone: CloneResult,
        cheatsheet: str,
        execution_output: Optional[str],
        summary: str,
    ) -> BranchResult:
        """Step 7: commit, push and open the pull request."""
        ticket = ctx.ticket
        base_branch = item.target.branch
        self._start_step(ctx, Step.SHIP, f"{item.service.repo}/{base_branch}")

        if not self.source_control.commit_and_push(clone.clone_dir, clone.feature_branch, ticket):
            self._end_step(ctx, Step.SHIP, False, "No changes")
            return BranchResult(
                service=item.service_name,
                base_branch=base_branch,
                error="No changes to commit",
                cheatsheet_summary=summary,
            )

        pr = self.source_control.create_pull_request(
            clone.clone_dir,
            clone.feature_branch,
            base_branch,
            ticket,
            execution_output or cheatsheet,
        )
        if pr is None:
            self._end_step(ctx, Step.SHIP, False, "Pull request creation failed")
            return BranchResult(
                service=item.service_name,
                base_branch=base_branch,
                error="PR creation failed",
                cheatsheet_summary=summary,
            )

        pr.service = item.service_name
        pr.base_branch = pr.base_branch or base_branch
        if pr.version is None:
            pr.version = item.target.version

        self._save(ctx, Step.SHIP, {
            **self._branch_state(item, clone),
            "pr_data": pr.to_dict(),
            "all_prs": [p.to_dict() for p in _with_pr(ctx.all_prs, pr)],
        })
        action = "updated" if pr.already_exists else "created"
        self._end_step(ctx, Step.SHIP, True, f"PR #{pr.pr_id} ({action})")
        return BranchResult(
            service=item.service_name,
            base_branch=base_branch,
            pull_request=pr,
            cheatsheet_summary=summary,
        )

    # ------------------------------------------------------------------
    # Step 8
    # ------------------------------------------------------------------

    def _notify(self, ctx: _RunContext) -> RunReport:
        self._start_step(ctx, Step.NOTIFY)

        if not ctx.all_prs:
            self._end_step(ctx, Step.NOTIFY, False, "No PRs created. Manual implementation may be needed.")
            return self._deliver(ctx, RunReport(
                ticket_key=ctx.ticket_key,
                success=False,
                reason="no_prs_created",
                failures=list(ctx.all_failures),
                cheatsheet_summary=ctx.cheatsheet_summary,
            ))

        self._transition(ctx, STATUS_REVIEW)
        done_label = self.config.pipeline.done_label
        for label in dict.fromkeys(done_label_for(pr.version, done_label) for pr in ctx.all_prs):
            self._update_label(ctx, label, add=True)
        report = self._deliver(ctx, RunReport(
            ticket_key=ctx.ticket_key,
            success=True,
            pull_requests=list(ctx.all_prs),
            failures=list(ctx.all_failures),
            cheatsheet_summary=ctx.cheatsheet_summary,
        ))
        self._end_step(ctx, Step.NOTIFY, True, f"{len(ctx.all_prs)} PR(s) created")

        self._save(ctx, Step.NOTIFY)
        self.store.clear(ctx.ticket_key)
        logger.info("Successfully processed %s: %d PR(s)", ctx.ticket_key, len(ctx.all_prs))
        return report

    # ------------------------------------------------------------------
    # Resume planning
    # ------------------------------------------------------------------

    def _plan_resume(self, ticket_key: str, from_step: Step) -> _ResumePlan:
        checkpoint = self.store.load(ticket_key)
        if checkpoint is None:
            raise ResumeError(f"No checkpoint found for {ticket_key}", ticket_key)

        logger.info(
            "Resuming %s from %s (checkpoint %s @ %s)",
            ticket_key, from_step.name, checkpoint.current_step.name, checkpoint.timestamp,
        )

        if from_step >= Step.EXECUTE and not checkpoint.cheatsheet:
            raise ResumeError(
                f"Cannot resume from step {from_step.name}: no cheatsheet found in checkpoint",
                ticket_key,
            )
        if not checkpoint.ticket_data:
            raise ResumeError("Cannot resume: insufficient checkpoint data", ticket_key)

        ticket = Ticket.from_dict(checkpoint.ticket_data)
        plan = _ResumePlan(
            ticket=ticket,
            cheatsheet=checkpoint.cheatsheet,
            execution_output=checkpoint.execution_output,
            all_prs=[PullRequest.from_dict(p) for p in checkpoint.all_prs],
            all_failures=[BranchFailure.from_dict(f) for f in checkpoint.all_failures],
        )

        if from_step >= Step.NOTIFY:
            plan.notify_only = True
            plan.keeps_checkpoint = True
            return plan

        if from_step <= Step.VALIDATE_TICKET or not checkpoint.service_name:
            return plan

        plan.start_index = self._locate(ticket, checkpoint)
        plan.keeps_checkpoint = True
        clone_usable = bool(
            checkpoint.clone_dir
            and checkpoint.feature_branch
            and dir_exists(checkpoint.clone_dir)
        )

        if clone_usable and from_step > Step.CLONE_REPO:
            plan.clone = CloneResult(
                clone_dir=checkpoint.clone_dir, feature_branch=checkpoint.feature_branch
            )
            plan.start_step = from_step
            return plan

        if clone_usable:
            self.source_control.cleanup(checkpoint.clone_dir)
        elif checkpoint.clone_dir:
            logger.info("Clone dir %s no longer exists, will re-clone", checkpoint.clone_dir)

        if from_step <= Step.CLONE_REPO:
            plan.start_step = Step.CLONE_REPO
        elif checkpoint.cheatsheet:
            plan.start_step = min(from_step, Step.EXECUTE)
        else:
            plan.start_step = Step.BUILD_CHEATSHEET
        return plan

    def _locate(self, ticket: Ticket, checkpoint: Checkpoint) -> int:
        """Index of the checkpointed (service, branch) among the work items."""
        for index, item in enumerate(self._work_items(ticket)):
            if (
                item.service_name == checkpoint.service_name
                and item.target.branch == checkpoint.branch_name
            ):
                return index
        return 0
