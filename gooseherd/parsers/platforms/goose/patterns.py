"""Line recognizers for Goose (--debug) run transcripts.

The transcript interleaves output from two writers:

    Goose:
        ─── tool_name | extension ──────────────────────────
        key: value                    (tool parameters)
        <stdout from tool>
        Annotated { ... }             (tool result, Rust Debug format)
        <free text>                   (agent reasoning)

    Gooseherd executor:
        $ command                     (shell commands)
        <AppName> run <uuid>          (run header)
        starting session | provider:  (session start)
"""
from __future__ import annotations

import re

TOOL_HEADER_PATTERN = re.compile(r"^─── (\S+) \| (\S+) ─+$")
SHELL_CMD_PATTERN = re.compile(r"^\$ (.+)$")
SESSION_START_PATTERN = re.compile(r"^starting session \| provider: (\S+) model: (.+)$")
SESSION_META_PATTERN = re.compile(r"^\s+(session id|working directory): .+$")
RUN_HEADER_PATTERN = re.compile(r"^\w+ run ([\w-]+)$")
TOOL_PARAM_PATTERN = re.compile(r"^([a-z_]+): (.+)$")
ANNOTATED_START_PATTERN = re.compile(r"^Annotated\s*\{")

_NOISE_PATTERNS = (
    re.compile(r"^---\s*loading\s+\.bash_profile"),
    re.compile(r"All secrets loaded from cache"),
    re.compile(r"^🎊"),
    re.compile(r"^\s*$"),
    re.compile(r"^zsh:\d+: command not found:"),
)

# Rust Debug fields from Annotated result blocks. Best-effort: the list only
# covers field names seen in current Goose output.
ANNOTATED_LEAK_PATTERN = re.compile(
    r"^\s*(raw:\s*Text\(|RawTextContent\s*\{|annotations:\s*(Some|None)"
    r"|Annotations\s*\{|audience:\s*Some\(|priority:\s*Some\(|meta:\s*None)"
)
# A reasoning block that starts like this is the tail of a block, not prose.
ANNOTATED_DEBRIS_PATTERN = re.compile(r"""^(["'),}\]]|text:\s*")""")


def is_noise_line(line: str) -> bool:
    """True for lines that carry no meaning and must never reach an event."""
    return any(pattern.search(line) for pattern in _NOISE_PATTERNS)


def is_tool_header(line: str) -> bool:
    return TOOL_HEADER_PATTERN.match(line) is not None


def is_annotated_start(line: str) -> bool:
    return ANNOTATED_START_PATTERN.match(line) is not None


def is_structural_line(line: str) -> bool:
    """Lines that end any inline sub-scan (params, tool output, shell output)."""
    return bool(
        TOOL_HEADER_PATTERN.match(line)
        or SHELL_CMD_PATTERN.match(line)
        or SESSION_START_PATTERN.match(line)
        or RUN_HEADER_PATTERN.match(line)
    )


def is_annotated_leak(line: str) -> bool:
    return ANNOTATED_LEAK_PATTERN.match(line) is not None
