"""Parse raw run logs into RunEvent sequences with progress and summary stats."""
from __future__ import annotations

import logging
import math
import time
from collections import Counter
from pathlib import Path

from gooseherd.models import EventStats, RunEvent
from gooseherd.observability import record_parse, start_span
from gooseherd.parsers.platforms.goose.parser import assemble_events

logger = logging.getLogger("gooseherd.parser")

PROGRESS_EVENT_TYPES = {"tool_call", "agent_thinking", "session_start"}

# Infrastructure phases get fixed milestones regardless of transcript length.
PHASE_PROGRESS: dict[str, float] = {
    "cloning": 5,
    "agent": 10,
    "committing": 88,
    "pushing": 95,
}


def _round_tenth(fraction: float) -> float:
    return math.floor(fraction * 1000 + 0.5) / 10


def assign_progress(events: list[RunEvent]) -> None:
    """Set `index` and `progressPercent` on every event in place.

    Tool calls, reasoning blocks and session starts advance in equal steps so
    the last of them lands on 100. Phase markers use PHASE_PROGRESS.
    """
    total = sum(1 for event in events if event.type in PROGRESS_EVENT_TYPES)
    seen = 0
    for idx, event in enumerate(events):
        event.index = idx
        if event.type in PROGRESS_EVENT_TYPES:
            seen += 1
            event.progressPercent = _round_tenth(seen / total)
        elif event.type == "phase_marker":
            event.progressPercent = PHASE_PROGRESS.get(event.phase or "", 0)
        else:
            event.progressPercent = 0


def parse_run_log(raw_log: str) -> list[RunEvent]:
    """Parse a complete Goose/Gooseherd transcript.

    Pure and re-entrant: every call works on its own copy of the lines, so the
    dashboard can re-parse a log on each request.
    """
    started = time.monotonic()
    with start_span("gooseherd.parse_run_log", {"log.bytes": len(raw_log)}):
        events = assemble_events(raw_log)
        assign_progress(events)
    duration_ms = (time.monotonic() - started) * 1000
    record_parse("success" if events else "empty", duration_ms, len(events))
    logger.debug("Parsed %d events from %d lines in %.1fms", len(events), raw_log.count("\n") + 1, duration_ms)
    return events


def get_event_stats(events: list[RunEvent]) -> EventStats:
    tools: Counter[str] = Counter()
    tool_calls = thinking_blocks = shell_commands = 0
    for event in events:
        if event.type == "tool_call":
            tool_calls += 1
            tools[event.tool or "unknown"] += 1
        elif event.type == "agent_thinking":
            thinking_blocks += 1
        elif event.type in {"shell_cmd", "phase_marker"}:
            shell_commands += 1
    return EventStats(
        totalEvents=len(events),
        toolCalls=tool_calls,
        thinkingBlocks=thinking_blocks,
        shellCommands=shell_commands,
        tools=dict(tools),
    )


def read_run_log(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def read_log_tail(path: Path, line_count: int) -> str:
    lines = read_run_log(path).split("\n")
    return "\n".join(lines[-max(1, line_count):])
