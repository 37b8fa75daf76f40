"""Pydantic models matching the dashboard JSON payloads."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional

# ── Run event models ───────────────────────────────────────────────

RunEventType = Literal[
    "session_start",
    "agent_thinking",
    "tool_call",
    "shell_cmd",
    "phase_marker",
    "info",
]

RUN_EVENT_TYPES: tuple[str, ...] = (
    "session_start",
    "agent_thinking",
    "tool_call",
    "shell_cmd",
    "phase_marker",
    "info",
)


class RunEvent(BaseModel):
    type: RunEventType
    index: int = 0
    progressPercent: float = 0.0
    content: str = ""

    # tool_call
    tool: Optional[str] = None
    extension: Optional[str] = None
    params: Optional[dict[str, str]] = None
    result: Optional[str] = None  # whitelisted result-capturing tools only

    # shell_cmd / phase_marker
    command: Optional[str] = None
    phase: Optional[str] = None

    # session_start
    provider: Optional[str] = None
    model: Optional[str] = None


class EventStats(BaseModel):
    totalEvents: int = 0
    toolCalls: int = 0
    thinkingBlocks: int = 0
    shellCommands: int = 0
    tools: dict[str, int] = Field(default_factory=dict)


# ── Run lifecycle models ───────────────────────────────────────────

RunStatus = Literal["queued", "running", "validating", "pushing", "completed", "failed"]
RunPhase = Literal["queued", "cloning", "agent", "validating", "pushing", "completed", "failed"]

IN_PROGRESS_STATUSES = {"queued", "running", "validating", "pushing"}
TERMINAL_STATUSES = {"completed", "failed"}


class RunFeedback(BaseModel):
    rating: Literal["up", "down"]
    note: Optional[str] = None
    by: Optional[str] = None
    at: str = ""


class RunRecord(BaseModel):
    id: str
    status: RunStatus = "queued"
    phase: Optional[RunPhase] = "queued"
    repoSlug: str
    task: str
    baseBranch: str
    branchName: str
    requestedBy: str
    channelId: str
    threadTs: str
    createdAt: str
    startedAt: Optional[str] = None
    finishedAt: Optional[str] = None
    logsPath: Optional[str] = None
    statusMessageTs: Optional[str] = None
    commitSha: Optional[str] = None
    changedFiles: list[str] = Field(default_factory=list)
    prUrl: Optional[str] = None
    feedback: Optional[RunFeedback] = None
    error: Optional[str] = None
    parentRunId: Optional[str] = None  # direct parent in the follow-up chain
    rootRunId: Optional[str] = None  # first run in the thread chain
    chainIndex: int = 0
    parentBranchName: Optional[str] = None
    feedbackNote: Optional[str] = None


class NewRunInput(BaseModel):
    repoSlug: str
    task: str
    baseBranch: str
    requestedBy: str
    channelId: str
    threadTs: str
    parentRunId: Optional[str] = None
    feedbackNote: Optional[str] = None


# ── API payloads ───────────────────────────────────────────────────

class FeedbackRequest(BaseModel):
    rating: str = ""
    note: Optional[str] = None
    by: Optional[str] = None


class RunEventsResponse(BaseModel):
    runId: str
    events: list[RunEvent] = Field(default_factory=list)
    stats: EventStats = Field(default_factory=EventStats)
