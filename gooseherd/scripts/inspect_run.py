#!/usr/bin/env python3
"""Visualize parsed Goose run logs in the terminal.

Same data the dashboard shows, for debugging runs and parser development.

Usage:
  gooseherd-inspect <runId>                  # pretty-print events
  gooseherd-inspect <runId> --json           # JSON event array
  gooseherd-inspect <runId> --filter tool_call
  gooseherd-inspect <runId> --stats-only
  gooseherd-inspect path/to/run.log          # direct log file
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

from gooseherd import config
from gooseherd.models import RUN_EVENT_TYPES, RunEvent
from gooseherd.parsers.run_log import get_event_stats, parse_run_log, read_run_log

_PREVIEW_CHARS = 120
_THINKING_CHARS = 200


class _Palette:
    """ANSI escapes, blank when the stream is not a terminal."""

    _CODES = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "cyan": "\033[36m",
        "yellow": "\033[33m",
        "green": "\033[32m",
        "red": "\033[31m",
        "magenta": "\033[35m",
        "blue": "\033[34m",
        "gray": "\033[90m",
        "bg_cyan": "\033[46m\033[30m",
        "bg_yellow": "\033[43m\033[30m",
        "bg_green": "\033[42m\033[30m",
        "bg_magenta": "\033[45m\033[37m",
    }

    def __init__(self, enabled: bool):
        for name, code in self._CODES.items():
            setattr(self, name, code if enabled else "")


def _is_memory_tool(name: Optional[str]) -> bool:
    return bool(name) and name.startswith("memory")


def resolve_log_path(target: str, work_root: Path) -> Optional[Path]:
    """Map a log path, run id or unique run id prefix to a run.log file."""
    direct = Path(target)
    if direct.suffix == ".log" and direct.is_file():
        return direct

    exact = work_root / target / config.RUN_LOG_NAME
    if exact.is_file():
        return exact

    if work_root.is_dir():
        matches = sorted(d for d in work_root.iterdir() if d.is_dir() and d.name.startswith(target))
        for match in matches:
            candidate = match / config.RUN_LOG_NAME
            if candidate.is_file():
                return candidate
    return None


# ── Event formatters ─────────────────────────────────────────────────

def _num(idx: int, c: _Palette) -> str:
    return f"{c.gray}{idx:>3}{c.reset}"


def _output_preview(lines: list[str], limit: int, c: _Palette) -> list[str]:
    rendered = [f"     {c.dim}{line[:_PREVIEW_CHARS]}{c.reset}" for line in lines[:limit]]
    if len(lines) > limit:
        rendered.append(f"     {c.dim}... {len(lines) - limit} more lines{c.reset}")
    return rendered


def format_tool_call(ev: RunEvent, idx: int, c: _Palette) -> str:
    tool_color = c.magenta if _is_memory_tool(ev.tool) else c.cyan
    ext_badge = f"{c.gray}| {ev.extension}{c.reset}" if ev.extension else ""
    lines = [f"{_num(idx, c)} {tool_color}{c.bold}{ev.tool}{c.reset} {ext_badge}"]

    for key, value in (ev.params or {}).items():
        shown = value if len(value) <= _PREVIEW_CHARS else value[: _PREVIEW_CHARS - 3] + "..."
        lines.append(f"     {c.gray}{key}:{c.reset} {shown}")

    # First content line is the summary; the rest is captured tool output.
    output = [line for line in ev.content.split("\n")[1:] if line.strip()]
    lines.extend(_output_preview(output, 5, c))

    if ev.result:
        lines.append(f"     {c.green}{c.bold}RESULT:{c.reset}")
        lines.extend(f"     {c.green}{line}{c.reset}" for line in ev.result.split("\n"))
    return "\n".join(lines)


def format_thinking(ev: RunEvent, idx: int, c: _Palette) -> str:
    ellipsis = "..." if len(ev.content) > _THINKING_CHARS else ""
    return f"{c.gray}{idx:>3} {c.dim}[thinking] {ev.content[:_THINKING_CHARS]}{ellipsis}{c.reset}"


def format_shell_cmd(ev: RunEvent, idx: int, c: _Palette) -> str:
    lines = [f"{_num(idx, c)} {c.blue}$ {ev.command}{c.reset}"]
    output = [line for line in ev.content.split("\n")[1:] if line.strip()]
    lines.extend(_output_preview(output, 3, c))
    return "\n".join(lines)


def format_phase_marker(ev: RunEvent, idx: int, c: _Palette) -> str:
    background = {
        "cloning": c.bg_cyan,
        "agent": c.bg_green,
        "pushing": c.bg_magenta,
        "committing": c.bg_yellow,
    }.get(ev.phase or "", c.bg_cyan)
    phase = (ev.phase or "").upper()
    return f"{_num(idx, c)} {background} {phase} {c.reset} {c.dim}{ev.command or ''}{c.reset}"


def format_session_start(ev: RunEvent, idx: int, c: _Palette) -> str:
    return f"{_num(idx, c)} {c.bg_green} SESSION {c.reset} {c.bold}{ev.provider}{c.reset} / {ev.model}"


def format_info(ev: RunEvent, idx: int, c: _Palette) -> str:
    return f"{_num(idx, c)} {c.dim}{ev.content}{c.reset}"


_FORMATTERS: dict[str, Callable[[RunEvent, int, _Palette], str]] = {
    "tool_call": format_tool_call,
    "agent_thinking": format_thinking,
    "shell_cmd": format_shell_cmd,
    "phase_marker": format_phase_marker,
    "session_start": format_session_start,
    "info": format_info,
}


def format_event(ev: RunEvent, idx: int, c: _Palette) -> str:
    return _FORMATTERS[ev.type](ev, idx, c)


def format_stats(events: list[RunEvent], c: _Palette) -> str:
    stats = get_event_stats(events)
    lines = [
        "",
        f"{c.bold}── Summary ──{c.reset}",
        f"  Total events:    {c.bold}{stats.totalEvents}{c.reset}",
        f"  Tool calls:      {c.cyan}{stats.toolCalls}{c.reset}",
        f"  Thinking blocks: {c.gray}{stats.thinkingBlocks}{c.reset}",
        f"  Shell commands:  {c.blue}{stats.shellCommands}{c.reset}",
    ]

    if stats.tools:
        lines += ["", f"{c.bold}── Tools Used ──{c.reset}"]
        for name, count in sorted(stats.tools.items(), key=lambda item: item[1], reverse=True):
            bar = "█" * min(count, 40)
            color = c.magenta if _is_memory_tool(name) else c.cyan
            lines.append(f"  {color}{name:<20}{c.reset} {c.dim}{bar}{c.reset} {count}")

    memory_events = [e for e in events if e.type == "tool_call" and _is_memory_tool(e.tool)]
    if memory_events:
        lines += ["", f"{c.bold}── Memory Tools ──{c.reset}"]
        for ev in memory_events:
            params = ev.params or {}
            query = params.get("query") or params.get("content", "")[:60] or "(no params)"
            outcome = f"{c.green}result{c.reset}" if ev.result else f"{c.red}no result{c.reset}"
            lines.append(f"  {c.magenta}{ev.tool}{c.reset} {c.dim}\"{query[:60]}\"{c.reset} → {outcome}")
    return "\n".join(lines)


# ── Main ─────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gooseherd-inspect",
        description="Visualize Goose agent log parser output.",
    )
    parser.add_argument("target", help="Run id, unique run id prefix, or path/to/run.log")
    parser.add_argument("--json", action="store_true", help="Output parsed events as a JSON array")
    parser.add_argument(
        "--filter",
        choices=RUN_EVENT_TYPES,
        metavar="TYPE",
        help=f"Show only events of TYPE ({', '.join(RUN_EVENT_TYPES)})",
    )
    parser.add_argument("--stats-only", action="store_true", help="Show only summary statistics")
    parser.add_argument("--work-root", default=str(config.WORK_ROOT), help="Directory holding per-run folders")
    return parser


def main(argv: list[str] | None = None, out: TextIO | None = None) -> int:
    args = build_parser().parse_args(argv)
    stream = out or sys.stdout
    work_root = Path(args.work_root)

    log_path = resolve_log_path(args.target, work_root)
    if log_path is None:
        print(f'Error: cannot find run log for "{args.target}"', file=sys.stderr)
        print(
            f"  Tried: {args.target}, {work_root}/{args.target}/{config.RUN_LOG_NAME}, "
            f"{work_root}/{args.target}*/{config.RUN_LOG_NAME}",
            file=sys.stderr,
        )
        return 1

    raw_log = read_run_log(log_path)
    events = parse_run_log(raw_log)

    if args.json:
        print(json.dumps([e.model_dump(exclude_none=True) for e in events], indent=2, ensure_ascii=False), file=stream)
        return 0

    c = _Palette(enabled=stream.isatty())
    if args.stats_only:
        print(format_stats(events, c), file=stream)
        return 0

    shown = [e for e in events if e.type == args.filter] if args.filter else events
    showing = f", showing {len(shown)} {args.filter}" if args.filter else ""
    print(f"\n{c.bold}{c.cyan}── inspect-run: {log_path.parent.name} ──{c.reset}", file=stream)
    line_count = raw_log.count("\n") + 1
    print(f"{c.dim}Log: {log_path} ({line_count} lines){c.reset}", file=stream)
    print(f"{c.dim}Parsed: {len(events)} events{showing}{c.reset}\n", file=stream)

    for ev in shown:
        print(format_event(ev, ev.index, c), file=stream)
    print(format_stats(events, c), file=stream)
    return 0


if __name__ == "__main__":
    sys.exit(main())
