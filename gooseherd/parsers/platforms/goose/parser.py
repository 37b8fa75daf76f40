"""Assemble Goose run transcripts into RunEvent sequences.

Single forward pass over the transcript lines. Structural lines (run header,
session start, shell commands, tool headers) each produce one event and consume
their trailing lines inline; everything else accumulates as agent reasoning
until the next structural line. Memory tool results may arrive detached from
their call when Goose batches parallel calls, so whitelisted calls that end
without a result block wait in a FIFO queue for the next orphaned block. The
queue only spans one contiguous run of tool calls.
"""
from __future__ import annotations

import logging
from collections import deque

from gooseherd.models import RunEvent
from gooseherd.parsers.platforms.goose.annotated import (
    AnnotatedResult,
    extract_annotated_result,
    skip_annotated_block,
)
from gooseherd.parsers.platforms.goose.patterns import (
    ANNOTATED_DEBRIS_PATTERN,
    RUN_HEADER_PATTERN,
    SESSION_META_PATTERN,
    SESSION_START_PATTERN,
    SHELL_CMD_PATTERN,
    TOOL_HEADER_PATTERN,
    TOOL_PARAM_PATTERN,
    is_annotated_leak,
    is_annotated_start,
    is_noise_line,
    is_structural_line,
)

logger = logging.getLogger("gooseherd.parser")

# Tools whose Annotated result payloads are decoded into `RunEvent.result`.
RESULT_CAPTURING_TOOLS = frozenset({"memory_search", "memory_add"})

AGENT_COMMAND_MARKERS = ("goose run", "AGENT_COMMAND")

# First match wins.
PHASE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("git clone",), "cloning"),
    (AGENT_COMMAND_MARKERS, "agent"),
    (("git push",), "pushing"),
    (("git add", "git commit"), "committing"),
)

_REPO_MARKER = "/repo/"
_FALLBACK_PATH_SEGMENTS = 3
_SUMMARY_PARAM_KEYS = ("path", "command", "query")


def classify_phase(command: str) -> str | None:
    for keywords, phase in PHASE_KEYWORDS:
        if any(keyword in command for keyword in keywords):
            return phase
    return None


def shorten_path(full_path: str) -> str:
    """Strip the `.work/<uuid>/repo/` clone prefix for display."""
    repo_index = full_path.find(_REPO_MARKER)
    if repo_index >= 0:
        return full_path[repo_index + len(_REPO_MARKER):]
    segments = full_path.split("/")
    if len(segments) > _FALLBACK_PATH_SEGMENTS:
        return ".../" + "/".join(segments[-_FALLBACK_PATH_SEGMENTS:])
    return full_path


def _tool_summary(tool: str, params: dict[str, str]) -> str:
    for key in _SUMMARY_PARAM_KEYS:
        value = params.get(key)
        if not value:
            continue
        if key == "path":
            value = shorten_path(value)
        return f"{tool}: {value}"
    return tool


def _with_output(summary: str, output_lines: list[str]) -> str:
    output = "\n".join(output_lines).strip()
    return f"{summary}\n{output}" if output else summary


def _thinking_event(buffer: list[str]) -> RunEvent | None:
    """Build an agent_thinking event, scrubbing leaked Annotated internals.

    Blocks that still start with Annotated debris after scrubbing are what is
    left of a block the skipper abandoned early; they are dropped whole.
    """
    cleaned = [line for line in buffer if not is_annotated_leak(line)]
    text = "\n".join(cleaned).strip()
    if not text:
        return None
    if ANNOTATED_DEBRIS_PATTERN.match(text):
        logger.debug("Discarding %d-line reasoning block of Annotated debris", len(buffer))
        return None
    return RunEvent(type="agent_thinking", content=text)


class _Assembler:
    def __init__(self, lines: list[str]):
        self.lines = lines
        self.events: list[RunEvent] = []
        self.thinking: list[str] = []
        self.pending_results: deque[RunEvent] = deque()

    def run(self) -> list[RunEvent]:
        i = 0
        while i < len(self.lines):
            i = self._step(i)
        self._flush_thinking()
        return self.events

    def _emit(self, event: RunEvent) -> None:
        # Batched results only follow a contiguous run of tool headers; any
        # other event ends the run and abandons calls that never got a result.
        if event.type != "tool_call" and self.pending_results:
            logger.debug("Dropping %d memory call(s) that never received a result", len(self.pending_results))
            self.pending_results.clear()
        self.events.append(event)

    def _flush_thinking(self) -> None:
        if self.thinking:
            event = _thinking_event(self.thinking)
            if event is not None:
                self._emit(event)
        self.thinking = []

    def _step(self, i: int) -> int:
        line = self.lines[i]
        if is_noise_line(line):
            return i + 1
        if is_annotated_start(line):
            return self._orphan_block(i)

        match = TOOL_HEADER_PATTERN.match(line)
        if match:
            return self._tool_call(i, match.group(1), match.group(2))
        match = SHELL_CMD_PATTERN.match(line)
        if match:
            return self._shell_command(i, match.group(1))
        match = SESSION_START_PATTERN.match(line)
        if match:
            return self._session_start(i, match.group(1), match.group(2))
        if RUN_HEADER_PATTERN.match(line):
            self._flush_thinking()
            self._emit(RunEvent(type="info", content=line))
            return i + 1

        self.thinking.append(line)
        return i + 1

    def _resolve_pending(self, summary: str) -> None:
        owner = self.pending_results.popleft()
        if summary:
            owner.result = summary
        else:
            logger.debug("Result block for %s had no decodable payload", owner.tool)

    def _orphan_block(self, i: int) -> int:
        if not self.pending_results:
            logger.debug("Skipping result block at line %d with no pending call", i + 1)
            return skip_annotated_block(self.lines, i)
        extracted = extract_annotated_result(self.lines, i)
        self._resolve_pending(extracted.summary)
        return extracted.end_index

    def _session_start(self, i: int, provider: str, model: str) -> int:
        self._flush_thinking()
        j = i + 1
        while j < len(self.lines) and SESSION_META_PATTERN.match(self.lines[j]):
            j += 1
        self._emit(
            RunEvent(
                type="session_start",
                provider=provider,
                model=model,
                content=f"Session started with {provider} / {model}",
            )
        )
        return j

    def _shell_command(self, i: int, command: str) -> int:
        self._flush_thinking()
        phase = classify_phase(command)

        j = i + 1
        output_lines: list[str] = []
        while j < len(self.lines):
            next_line = self.lines[j]
            if is_structural_line(next_line):
                break
            if is_annotated_start(next_line):
                j = skip_annotated_block(self.lines, j)
                continue
            if not is_noise_line(next_line):
                output_lines.append(next_line)
            j += 1

        self._emit(
            RunEvent(
                type="phase_marker" if phase else "shell_cmd",
                command=command,
                phase=phase,
                content=_with_output(f"$ {command}", output_lines),
            )
        )
        return j

    def _tool_call(self, i: int, tool: str, extension: str) -> int:
        self._flush_thinking()
        captures_result = tool in RESULT_CAPTURING_TOOLS

        params: dict[str, str] = {}
        j = i + 1
        while j < len(self.lines):
            param_line = self.lines[j]
            if is_noise_line(param_line):
                j += 1
                continue
            match = TOOL_PARAM_PATTERN.match(param_line)
            if not match:
                break
            params[match.group(1)] = match.group(2)
            j += 1

        # Tool stdout runs until the result block or the next structural line.
        # Once the result block appears the call is over.
        output_lines: list[str] = []
        extracted: AnnotatedResult | None = None
        while j < len(self.lines):
            next_line = self.lines[j]
            if is_structural_line(next_line):
                break
            if is_annotated_start(next_line):
                if captures_result:
                    extracted = extract_annotated_result(self.lines, j)
                    j = extracted.end_index
                else:
                    j = skip_annotated_block(self.lines, j)
                while j < len(self.lines) and is_noise_line(self.lines[j]):
                    j += 1
                break
            if not is_noise_line(next_line):
                output_lines.append(next_line)
            j += 1

        event = RunEvent(
            type="tool_call",
            tool=tool,
            extension=extension,
            params=params,
            content=_with_output(_tool_summary(tool, params), output_lines),
        )
        self._emit(event)
        if captures_result:
            # In a batch the first block after the last header answers the
            # oldest pending call, not this one.
            self.pending_results.append(event)
            if extracted is not None:
                self._resolve_pending(extracted.summary)
        return j


def assemble_events(raw_log: str) -> list[RunEvent]:
    """Parse a raw transcript into events; `index`/`progressPercent` stay 0."""
    return _Assembler(raw_log.split("\n")).run()
