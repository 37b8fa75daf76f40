"""Scanning and decoding of `Annotated { ... }` tool result blocks.

Goose prints tool results with Rust's Debug formatter. A block opens on a line
matching `Annotated {` and spans every following line until its braces balance.
String values are wrapped in double quotes and may contain braces of their own
(CSS, code, JSON), so depth only counts braces outside quoted strings.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from gooseherd.parsers.platforms.goose.patterns import is_tool_header

MAX_RESULT_PREVIEWS = 3
RESULT_SNIPPET_CHARS = 150

# text: "{...}" inside RawTextContent, possibly spanning lines.
_EMBEDDED_JSON_PATTERN = re.compile(r'text:\s*"(\{[\s\S]*?\})"')
_DEBUG_ESCAPE_PATTERN = re.compile(r"\\(.)", re.DOTALL)
_DEBUG_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "'": "'", "\\": "\\"}


@dataclass(frozen=True)
class AnnotatedResult:
    end_index: int
    summary: str = ""


def _is_escaped(line: str, pos: int) -> bool:
    # Backslashes pair off; only an odd run escapes the quote.
    run = 0
    while pos - run > 0 and line[pos - run - 1] == "\\":
        run += 1
    return run % 2 == 1


def _unescape_debug_string(raw: str) -> str:
    return _DEBUG_ESCAPE_PATTERN.sub(lambda m: _DEBUG_ESCAPES.get(m.group(1), m.group(0)), raw)


def _brace_delta(line: str) -> int:
    delta = 0
    in_quote = False
    for pos, ch in enumerate(line):
        if ch == '"' and not _is_escaped(line, pos):
            in_quote = not in_quote
            continue
        if in_quote:
            continue
        if ch == "{":
            delta += 1
        elif ch == "}":
            delta -= 1
    return delta


def _scan_block(lines: list[str], start_index: int, collected: list[str] | None = None) -> int:
    # 1 for a bare `Annotated {` line; 0 when the whole block sits on one line.
    depth = _brace_delta(lines[start_index])
    i = start_index + 1
    while i < len(lines) and depth > 0:
        line = lines[i]
        # Interleaved async output can corrupt the count; never swallow a tool header.
        if is_tool_header(line):
            return i
        if collected is not None:
            collected.append(line)
        depth += _brace_delta(line)
        i += 1
    return i


def skip_annotated_block(lines: list[str], start_index: int) -> int:
    """Return the index just past the block opened at `lines[start_index]`."""
    return _scan_block(lines, start_index)


def extract_annotated_result(lines: list[str], start_index: int) -> AnnotatedResult:
    """Skip the block like `skip_annotated_block` and summarize its JSON payload.

    The summary is empty when the block has no embedded JSON object or the
    payload has an unrecognized shape. Parse errors are never raised.
    """
    collected: list[str] = [lines[start_index]]
    end_index = _scan_block(lines, start_index, collected)
    match = _EMBEDDED_JSON_PATTERN.search("\n".join(collected))
    if not match:
        return AnnotatedResult(end_index)

    raw = _unescape_debug_string(match.group(1))
    try:
        payload = json.loads(raw, strict=False)
    except ValueError:
        return AnnotatedResult(end_index)
    return AnnotatedResult(end_index, format_result_payload(payload))


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _snippet(text: Any) -> str:
    cleaned = " ".join(str(text or "").split())
    if len(cleaned) > RESULT_SNIPPET_CHARS:
        return cleaned[:RESULT_SNIPPET_CHARS] + "..."
    return cleaned


def _format_search_results(payload: dict[str, Any], results: list[Any]) -> str:
    header = _plural(len(results), "result")
    mode = payload.get("mode")
    if isinstance(mode, str) and mode.strip():
        header += f" (mode: {mode.strip()})"
    tokens = payload.get("tokens_used", payload.get("token_count"))
    if isinstance(tokens, int) and not isinstance(tokens, bool):
        header += f" · {tokens} tokens"

    lines = [header]
    for entry in results[:MAX_RESULT_PREVIEWS]:
        if not isinstance(entry, dict):
            lines.append(f"  {_snippet(entry)}")
            continue
        score = entry.get("score")
        snippet = _snippet(entry.get("content"))
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            lines.append(f"  {round(score * 100)}% {snippet}")
        else:
            lines.append(f"  {snippet}")
    if len(results) > MAX_RESULT_PREVIEWS:
        lines.append(f"  ... and {len(results) - MAX_RESULT_PREVIEWS} more")
    return "\n".join(lines)


def format_result_payload(payload: Any) -> str:
    """Render a decoded memory tool payload as a short human-readable summary."""
    if not isinstance(payload, dict):
        return ""
    results = payload.get("results")
    if isinstance(results, list):
        return _format_search_results(payload, results)
    success = payload.get("success")
    if isinstance(success, bool):
        return "stored" if success else "failed"
    return ""
