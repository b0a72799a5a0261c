"""
Provider-agnostic process lifecycle for coding-agent CLIs.

Handles:
- Child process spawning with a copy of the parent environment
- Stdout streaming with per-line event parsing
- Heartbeat logging while the process runs
- Wall-clock timeout (SIGTERM, then SIGKILL after a grace period)
- Per-invocation log files

Nothing here knows about Claude or Codex; adapters translate between this
interface and each CLI.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, TextIO

from ticket_swarm.errors import CLINotFoundError, SpawnError, SpawnTimeoutError
from ticket_swarm.models import SpawnResult, StreamEvent, StructuredEvent
from ticket_swarm.providers.stream import describe_event, iter_stream_events

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 30.0
KILL_GRACE_SECONDS = 5.0

EventCallback = Callable[[StreamEvent], None]


@dataclass(frozen=True)
class LogContext:
    """Where and how to write the per-invocation log file."""
    log_dir: str
    ticket_key: str
    provider: Optional[str] = None
    prompt: Optional[str] = None


def _signal_process(proc: subprocess.Popen, sig: int) -> None:
    """Signal the child's process group so CLI subprocesses go with it."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


def _terminate(proc: subprocess.Popen, grace_seconds: float) -> None:
    """SIGTERM, then SIGKILL if the process outlives the grace period."""
    if proc.poll() is not None:
        return
    _signal_process(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        _signal_process(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
        proc.wait()


def _tee_lines(stream: TextIO, sink: list[str]) -> Iterator[str]:
    """Yield stdout lines while keeping the raw text."""
    for line in stream:
        sink.append(line)
        yield line


def _pump(stream: TextIO, sink: list[str], label: str) -> None:
    for chunk in stream:
        sink.append(chunk)
        trimmed = chunk.strip()
        if trimmed:
            logger.debug("[%s:stderr] %s", label, trimmed[:300])


def _log_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def write_invocation_log(
    context: LogContext,
    label: str,
    exit_code: int,
    elapsed_seconds: int,
    event_count: int,
    stdout: str,
) -> Optional[Path]:
    """
    Write run info, prompt and full stdout of one invocation.

    Returns the file path, or None when the file could not be written.
    """
    provider_tag = f"-{context.provider}" if context.provider else ""
    path = Path(context.log_dir) / (
        f"{context.ticket_key}-{label}{provider_tag}-{_log_timestamp()}.log"
    )

    lines = [
        "=== RUN INFO ===",
        f"Ticket: {context.ticket_key}",
        f"Pass: {label}",
        f"Provider: {context.provider or 'unknown'}",
        f"Exit Code: {exit_code}",
        f"Duration: {elapsed_seconds}s",
        f"Events: {event_count}",
        "",
    ]
    if context.prompt:
        lines.extend(["=== PROMPT ===", context.prompt, ""])
    lines.extend(["=== STDOUT ===", stdout or "(empty)"])

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines), encoding="utf-8")
    except OSError as e:
        logger.warning("[%s] Could not write log file %s: %s", label, path, e)
        return None

    logger.info("[%s] Output saved to %s", label, path)
    return path


def spawn(
    command: str,
    args: list[str],
    working_dir: str | Path,
    timeout_seconds: float,
    *,
    label: str,
    on_event: Optional[EventCallback] = None,
    log_context: Optional[LogContext] = None,
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
    kill_grace_seconds: float = KILL_GRACE_SECONDS,
) -> SpawnResult:
    """
    Run a CLI to completion, streaming its stdout as events.

    A non-zero exit code is returned in the result, not raised.

    Args:
        command: CLI binary to run.
        args: CLI arguments.
        working_dir: Working directory for the child.
        timeout_seconds: Wall-clock bound for the whole run.
        label: Human-readable label used in logs and log filenames.
        on_event: Called for every parsed event, structured or raw.
        log_context: When given, a per-invocation log file is written.
        heartbeat_interval: Seconds between heartbeat log lines.
        kill_grace_seconds: Delay between SIGTERM and SIGKILL on timeout.

    Raises:
        CLINotFoundError: If the binary cannot be found.
        SpawnError: If the OS refuses to start the process.
        SpawnTimeoutError: If the process exceeds timeout_seconds.
    """
    if not Path(working_dir).is_dir():
        raise SpawnError(
            f"Failed to spawn {command} ({label}): working directory not found: {working_dir}",
            command=command,
        )

    logger.info(
        "[%s] Spawning %s (timeout=%dmin)...", label, command, round(timeout_seconds / 60)
    )
    logger.debug("[%s] Working directory: %s", label, working_dir)

    start_time = time.monotonic()
    try:
        proc = subprocess.Popen(
            [command, *args],
            cwd=str(working_dir),
            env=os.environ.copy(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
            start_new_session=True,
        )
    except FileNotFoundError:
        raise CLINotFoundError(command)
    except OSError as e:
        raise SpawnError(f"Failed to spawn {command} ({label}): {e}", command=command)

    logger.info("[%s] Process spawned (PID: %s)", label, proc.pid)

    stdout_lines: list[str] = []
    stderr_chunks: list[str] = []
    event_count = 0
    timed_out = threading.Event()
    heartbeat_stop = threading.Event()

    def elapsed() -> float:
        return time.monotonic() - start_time

    def heartbeat_thread() -> None:
        while not heartbeat_stop.wait(heartbeat_interval):
            logger.info(
                "[%s] heartbeat: %ds elapsed, %d events", label, int(elapsed()), event_count
            )

    def on_timeout() -> None:
        timed_out.set()
        logger.warning(
            "[%s] Timed out after %ds (%d events)", label, int(elapsed()), event_count
        )
        _terminate(proc, kill_grace_seconds)

    stderr_thread = threading.Thread(
        target=_pump, args=(proc.stderr, stderr_chunks, label), daemon=True
    )
    hb_thread = threading.Thread(
        target=heartbeat_thread, name=f"heartbeat-{label}", daemon=True
    )
    timer = threading.Timer(timeout_seconds, on_timeout)
    timer.daemon = True

    stderr_thread.start()
    hb_thread.start()
    timer.start()

    try:
        for event in iter_stream_events(_tee_lines(proc.stdout, stdout_lines)):
            if isinstance(event, StructuredEvent):
                event_count += 1
                summary = describe_event(event)
                if summary:
                    logger.info("[%s] %s", label, summary)
            if on_event is not None:
                on_event(event)

        proc.wait()
    finally:
        timer.cancel()
        heartbeat_stop.set()
        if proc.poll() is None:
            _terminate(proc, kill_grace_seconds)
        stderr_thread.join(timeout=kill_grace_seconds)
        hb_thread.join(timeout=1)

    duration = elapsed()
    stdout = "".join(stdout_lines)

    if timed_out.is_set():
        raise SpawnTimeoutError(
            f"{command} ({label}) timed out after {int(duration)}s",
            timeout_seconds=timeout_seconds,
            elapsed_seconds=duration,
            returncode=proc.returncode if proc.returncode is not None else -1,
        )

    exit_code = proc.returncode
    logger.info(
        "[%s] Finished: exit=%s, duration=%ds, events=%d",
        label, exit_code, int(duration), event_count,
    )
    if exit_code != 0:
        logger.warning("[%s] Exited with code %s", label, exit_code)

    if log_context is not None:
        write_invocation_log(
            log_context, label, exit_code, int(duration), event_count, stdout
        )

    return SpawnResult(
        stdout=stdout,
        stderr="".join(stderr_chunks),
        exit_code=exit_code,
        duration_seconds=duration,
        event_count=event_count,
    )
