"""
Execution strategies over one or two provider invocations.

This module provides:
- Output quality predicates (rate limit, garbage, best-of selection)
- ProviderInvoker, which binds adapters, the spawn engine and config
- The single, fallback, parallel and race strategies
- run_ai(), the one entry point every other module uses to run an agent

Parallel and race never run more than two invocations at once and are never
nested.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from ticket_swarm.errors import LLMError, RateLimitClassifier, StrategyError
from ticket_swarm.models import (
    InvocationRequest,
    InvocationResult,
    ProviderKind,
    StrategyKind,
)
from ticket_swarm.providers.adapters import get_adapter
from ticket_swarm.providers.spawn import LogContext, spawn
from ticket_swarm.utils.fs import FileSystemError, copy_tree, remove_dir

if TYPE_CHECKING:
    from ticket_swarm.config import ModeConfig, TicketSwarmConfig
    from ticket_swarm.logger import RunLogger

logger = logging.getLogger(__name__)

MIN_USEFUL_OUTPUT_CHARS = 50
STRUCTURED_MARKERS = ("FILES CHANGED", "SUMMARY", "RISKS")
PARALLEL_DIR_SUFFIX = "-parallel"


# ============================================================================
# Output predicates
# ============================================================================


def is_rate_limited(text: Optional[str]) -> bool:
    """Check text against the generic rate-limit signatures."""
    return RateLimitClassifier.is_rate_limited(text)


def is_garbage_output(text: Optional[str]) -> bool:
    """Output is unusable if empty, under 50 characters, or rate-limited."""
    if not text or not text.strip():
        return True
    if is_rate_limited(text):
        return True
    return len(text.strip()) < MIN_USEFUL_OUTPUT_CHARS


def _longest(results: Sequence[InvocationResult]) -> InvocationResult:
    # max() keeps the first of equal-length outputs
    return max(results, key=lambda r: len(r.output))


def pick_best_output(results: Sequence[InvocationResult]) -> Optional[InvocationResult]:
    """
    Pick the best of several results.

    Structured output (FILES CHANGED / SUMMARY / RISKS) beats normal
    completion, which beats any other usable output; length breaks ties.
    When nothing is usable, the first result with any output is returned.
    """
    valid = [r for r in results if r is not None and r.output and not is_garbage_output(r.output)]
    if not valid:
        for result in results:
            if result is not None and result.output:
                return result
        return results[0] if results else None

    structured = [r for r in valid if any(m in r.output for m in STRUCTURED_MARKERS)]
    if structured:
        return _longest(structured)

    completed = [r for r in valid if r.completed_normally]
    if completed:
        return _longest(completed)

    return _longest(valid)


def is_acceptable(result: InvocationResult) -> bool:
    return not is_garbage_output(result.output) and not result.rate_limited


# ============================================================================
# Invoker
# ============================================================================


class ProviderInvoker:
    """
    Runs one provider for one request.

    Builds the CLI invocation through the provider's adapter, runs it through
    the spawn engine and folds the parsed output into an InvocationResult.
    """

    def __init__(
        self,
        config: TicketSwarmConfig,
        spawn_fn: Callable[..., object] = spawn,
    ) -> None:
        self.config = config
        self._spawn = spawn_fn

    def invoke(
        self,
        kind: ProviderKind,
        request: InvocationRequest,
        working_dir: Optional[str] = None,
        label: Optional[str] = None,
    ) -> InvocationResult:
        """
        Run a provider and return its result.

        Raises:
            LLMError: If the process cannot be spawned or times out.
        """
        adapter = get_adapter(kind)
        settings = self.config.mode(request.mode).settings_for(kind)
        if request.turn_factor != 1.0 and settings.max_turns:
            settings = replace(
                settings, max_turns=math.ceil(settings.max_turns * request.turn_factor)
            )
        invocation = adapter.build_invocation(request.prompt, settings)
        label = label or request.label

        log_context = None
        log_dir = request.log_dir or self.config.agent.log_dir
        if request.ticket_key:
            log_context = LogContext(
                log_dir=log_dir,
                ticket_key=request.ticket_key,
                provider=kind.value,
                prompt=request.prompt,
            )

        raw = self._spawn(
            adapter.command(settings),
            invocation.args,
            working_dir or request.working_dir,
            invocation.timeout_seconds,
            label=label,
            log_context=log_context,
        )
        parsed = adapter.parse_output(raw.stdout, raw.exit_code)

        return InvocationResult(
            output=parsed.output,
            completed_normally=parsed.completed_normally,
            exit_code=raw.exit_code,
            turn_count=parsed.turn_count,
            rate_limited=is_rate_limited(parsed.output) or adapter.is_rate_limited(parsed.output),
            provider=kind.value,
            duration_seconds=raw.duration_seconds,
        )

    def invoke_safely(
        self,
        kind: ProviderKind,
        request: InvocationRequest,
        working_dir: Optional[str] = None,
        label: Optional[str] = None,
    ) -> InvocationResult:
        """Like invoke(), but a provider that throws yields the failure placeholder."""
        try:
            return self.invoke(kind, request, working_dir=working_dir, label=label)
        except LLMError as e:
            logger.warning("[%s] Provider %s threw: %s", label or request.label, kind.value, e)
            return InvocationResult.failure(kind.value)


# ============================================================================
# Strategies
# ============================================================================


def run_single(
    invoker: ProviderInvoker, request: InvocationRequest, mode_config: ModeConfig
) -> InvocationResult:
    """Run the primary provider and return its result unconditionally."""
    return invoker.invoke(mode_config.provider, request)


def run_fallback(
    invoker: ProviderInvoker, request: InvocationRequest, mode_config: ModeConfig
) -> InvocationResult:
    """
    Run the primary; if it failed in any way, run the secondary.

    Failure means: not completed normally, rate-limited or garbage output.
    The secondary's result is returned whatever its quality.
    """
    providers = mode_config.providers()
    primary_kind = providers[0]
    primary = invoker.invoke_safely(primary_kind, request)

    if primary.completed_normally and not primary.rate_limited and not is_garbage_output(primary.output):
        return primary

    if len(providers) < 2:
        logger.warning(
            "[%s] Primary provider %s failed, no fallback configured",
            request.label, primary_kind.value,
        )
        return primary

    secondary_kind = providers[1]
    logger.info(
        "[%s] Primary %s failed (exit=%s, rate_limited=%s), falling back to %s",
        request.label, primary_kind.value, primary.exit_code,
        primary.rate_limited, secondary_kind.value,
    )
    return invoker.invoke_safely(secondary_kind, request, label=f"{request.label}-fallback")


def run_parallel(
    invoker: ProviderInvoker, request: InvocationRequest, mode_config: ModeConfig
) -> InvocationResult:
    """
    Run both providers at once and keep the better result.

    In write mode the secondary works on a copy of the working directory,
    and its result is only returned when the primary produced nothing
    usable, since only the primary wrote to the real directory.

    Raises:
        StrategyError: If both providers threw.
    """
    providers = mode_config.providers()
    if len(providers) < 2:
        return invoker.invoke(providers[0], request)

    kind_a, kind_b = providers
    write_mode = request.mode.is_write_capable
    working_dir_b = request.working_dir

    if write_mode:
        working_dir_b = f"{request.working_dir.rstrip('/')}{PARALLEL_DIR_SUFFIX}"
        try:
            copy_tree(request.working_dir, working_dir_b)
            logger.info("[%s] Copied working dir for parallel provider: %s", request.label, working_dir_b)
        except FileSystemError as e:
            logger.warning("[%s] Failed to copy working dir for parallel: %s", request.label, e)
            try:
                remove_dir(working_dir_b)
            except FileSystemError as cleanup_error:
                logger.warning("[%s] Could not remove partial parallel copy: %s", request.label, cleanup_error)
            return invoker.invoke(kind_a, request)

    logger.info("[%s] Running %s and %s in parallel", request.label, kind_a.value, kind_b.value)

    try:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="parallel") as executor:
            future_a = executor.submit(
                invoker.invoke, kind_a, request, label=f"{request.label}-{kind_a.value}"
            )
            future_b = executor.submit(
                invoker.invoke, kind_b, request,
                working_dir=working_dir_b, label=f"{request.label}-{kind_b.value}",
            )
            result_a = _settled(future_a, kind_a, request.label)
            result_b = _settled(future_b, kind_b, request.label)
    finally:
        if write_mode:
            try:
                remove_dir(working_dir_b)
            except FileSystemError as e:
                logger.warning("[%s] Could not remove parallel copy: %s", request.label, e)

    results = [r for r in (result_a, result_b) if r is not None]
    if not results:
        raise StrategyError("Both providers failed in parallel strategy")

    best = pick_best_output(results)

    if (
        write_mode
        and best is result_b
        and result_a is not None
        and not is_garbage_output(result_a.output)
    ):
        logger.info(
            "[%s] Parallel: preferring %s in write mode (original working dir)",
            request.label, kind_a.value,
        )
        return result_a

    return best


def _settled(future: Future, kind: ProviderKind, label: str) -> Optional[InvocationResult]:
    try:
        return future.result()
    except LLMError as e:
        logger.warning("[%s] Provider %s threw: %s", label, kind.value, e)
        return None


def run_race(
    invoker: ProviderInvoker, request: InvocationRequest, mode_config: ModeConfig
) -> InvocationResult:
    """
    Run both providers at once and return the first acceptable result.

    The loser keeps running in the background until its own timeout, but
    its result is ignored. When neither is acceptable the longer output wins.

    Raises:
        StrategyError: If both providers threw.
    """
    providers = mode_config.providers()
    if len(providers) < 2:
        return invoker.invoke(providers[0], request)

    kind_a, kind_b = providers
    logger.info("[%s] Racing %s vs %s", request.label, kind_a.value, kind_b.value)

    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="race")
    try:
        pending = {
            executor.submit(invoker.invoke, kind, request, label=f"{request.label}-{kind.value}"): kind
            for kind in (kind_a, kind_b)
        }
        finished: list[InvocationResult] = []
        failures = 0

        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                kind = pending.pop(future)
                try:
                    result = future.result()
                except LLMError as e:
                    logger.warning("[%s] Race: %s failed: %s", request.label, kind.value, e)
                    failures += 1
                    finished.append(InvocationResult.failure(kind.value))
                    continue

                if is_acceptable(result):
                    logger.info(
                        "[%s] Race winner: %s (%ds)",
                        request.label, result.provider, int(result.duration_seconds),
                    )
                    return result
                finished.append(result)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if failures >= 2:
        raise StrategyError("Both providers failed in race strategy")

    logger.warning("[%s] Race: no good result, returning best of two", request.label)
    return _longest(finished)


_STRATEGIES: dict[StrategyKind, Callable[[ProviderInvoker, InvocationRequest, ModeConfig], InvocationResult]] = {
    StrategyKind.SINGLE: run_single,
    StrategyKind.FALLBACK: run_fallback,
    StrategyKind.PARALLEL: run_parallel,
    StrategyKind.RACE: run_race,
}


def run_ai(
    request: InvocationRequest,
    config: TicketSwarmConfig,
    invoker: Optional[ProviderInvoker] = None,
    run_logger: Optional[RunLogger] = None,
) -> InvocationResult:
    """
    Run a coding agent for a request using the configured strategy.

    This is the only function other modules call to run an agent.

    Raises:
        LLMError: Propagated from single runs, or StrategyError when every
            provider of a parallel or race run threw.
    """
    invoker = invoker or ProviderInvoker(config)
    strategy = config.ai_provider.strategy
    mode_config = config.mode(request.mode)

    logger.info(
        "[%s] run_ai: mode=%s, strategy=%s, provider=%s",
        request.label, request.mode.value, strategy.value, mode_config.provider.value,
    )
    logger.info("[%s] Prompt length: %d characters", request.label, len(request.prompt))

    result = _STRATEGIES[strategy](invoker, request, mode_config)

    logger.info(
        "[%s] run_ai complete: provider=%s, exit=%s, duration=%ds, output=%d chars",
        request.label, result.provider, result.exit_code,
        int(result.duration_seconds), len(result.output),
    )
    if run_logger is not None:
        run_logger.info("ai_invocation_complete", {
            "label": request.label,
            "mode": request.mode.value,
            "strategy": strategy.value,
            "provider": result.provider,
            "exit_code": result.exit_code,
            "completed_normally": result.completed_normally,
            "rate_limited": result.rate_limited,
            "output_chars": len(result.output),
            "duration_seconds": round(result.duration_seconds, 2),
        })
    return result


def provider_label(config: TicketSwarmConfig) -> str:
    """Display label for the execute configuration, e.g. "claude (haiku) [single]"."""
    execute = config.ai_provider.execute
    settings = execute.settings_for(execute.provider)
    model = settings.model or "default"
    return f"{execute.provider.value} ({model}) [{config.ai_provider.strategy.value}]"
