"""
Line-oriented event parsing for coding-agent CLI stdout.

Stream-JSON providers emit one JSON object per line. Lines that do not parse
are passed through as raw text events instead of being dropped, so callers
see everything the process printed.
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator, Optional

from ticket_swarm.models import RawTextEvent, StreamEvent, StructuredEvent


def parse_line(line: str) -> Optional[StreamEvent]:
    """
    Parse a single stdout line.

    Returns None for blank lines, a StructuredEvent for JSON objects and a
    RawTextEvent for anything else.
    """
    trimmed = line.strip()
    if not trimmed:
        return None

    try:
        payload = json.loads(trimmed)
    except json.JSONDecodeError:
        return RawTextEvent(text=trimmed)

    if not isinstance(payload, dict):
        return RawTextEvent(text=trimmed)
    return StructuredEvent(payload=payload)


def iter_stream_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """
    Lazily turn a sequence of stdout lines into stream events.

    The generator is finite and single-use. A final line without a trailing
    newline gets the same parse attempt as every other line.
    """
    for line in lines:
        event = parse_line(line)
        if event is not None:
            yield event


def iter_text_events(raw_stdout: str) -> Iterator[StreamEvent]:
    """Parse a complete stdout buffer into events."""
    return iter_stream_events(raw_stdout.split("\n"))


def describe_event(event: StreamEvent) -> Optional[str]:
    """
    One-line summary of a notable event for operational logs.

    Returns None for events not worth logging at info level.
    """
    if isinstance(event, RawTextEvent):
        return None

    payload = event.payload
    if event.type == "assistant":
        message = payload.get("message") or {}
        for block in message.get("content") or []:
            if block.get("type") == "tool_use":
                command = (block.get("input") or {}).get("command")
                suffix = f": {command[:80]}" if isinstance(command, str) else ""
                return f"Tool: {block.get('name')}{suffix}"
        return None

    if event.type == "result":
        return (
            f"Result event: cost=${payload.get('cost_usd', '?')}, "
            f"duration={payload.get('duration_ms', '?')}ms, "
            f"turns={payload.get('num_turns', '?')}"
        )
    return None
