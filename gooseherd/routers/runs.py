"""API router for runs, their parsed event streams, logs and feedback."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query

from gooseherd.models import (
    EventStats,
    FeedbackRequest,
    RunEventsResponse,
    RunFeedback,
    RunRecord,
)
from gooseherd.observability import record_log_read_failure
from gooseherd.parsers.run_log import get_event_stats, parse_run_log, read_log_tail, read_run_log
from gooseherd.run_store import RunNotFoundError, run_store

logger = logging.getLogger("gooseherd.api")

_DEFAULT_LIMIT = 100
_MAX_LIMIT = 500
_MAX_NOTE_CHARS = 1000
_MAX_BY_CHARS = 120


def _parse_limit(raw: str | None) -> int:
    if not raw:
        return _DEFAULT_LIMIT
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_LIMIT
    if parsed < 1:
        return _DEFAULT_LIMIT
    return min(parsed, _MAX_LIMIT)


def _resolve_run(run_id: str) -> RunRecord:
    run = run_store.find_run_by_identifier(run_id)
    if not run:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run


# ── Runs router ─────────────────────────────────────────────────────

runs_router = APIRouter(prefix="/api/runs", tags=["runs"])


@runs_router.get("")
def list_runs(limit: str | None = Query(None, description="Max runs to return (1-500)")):
    """List runs, newest first."""
    return {"runs": run_store.list_runs(_parse_limit(limit))}


@runs_router.get("/{run_id}")
def get_run(run_id: str):
    """Get a run by full id or unique id prefix."""
    return {"run": _resolve_run(run_id)}


@runs_router.get("/{run_id}/log")
def get_run_log(run_id: str, lines: str | None = Query(None, description="Tail line count (1-500)")):
    """Return the tail of the raw run log."""
    run = _resolve_run(run_id)
    line_count = _parse_limit(lines)
    try:
        log = read_log_tail(run_store.logs_path_for(run), line_count)
    except OSError as e:
        logger.info("Run log unavailable for %s: %s", run.id, e)
        record_log_read_failure("log")
        log = ""
    return {"runId": run.id, "lines": line_count, "log": log}


@runs_router.get("/{run_id}/events", response_model=RunEventsResponse, response_model_exclude_none=True)
def get_run_events(run_id: str):
    """Parse the run log into structured events.

    The log is re-read and re-parsed on every request so in-flight runs show
    their latest progress.
    """
    run = _resolve_run(run_id)
    try:
        raw_log = read_run_log(run_store.logs_path_for(run))
    except OSError as e:
        logger.info("Run log unavailable for %s: %s", run.id, e)
        record_log_read_failure("events")
        return RunEventsResponse(runId=run.id, events=[], stats=EventStats())

    events = parse_run_log(raw_log)
    return RunEventsResponse(runId=run.id, events=events, stats=get_event_stats(events))


@runs_router.post("/{run_id}/feedback")
def post_run_feedback(run_id: str, payload: FeedbackRequest):
    """Record a thumbs up/down rating for a run."""
    run = _resolve_run(run_id)
    if payload.rating not in ("up", "down"):
        raise HTTPException(status_code=400, detail="rating must be one of: up, down")

    feedback = RunFeedback(
        rating=payload.rating,
        note=(payload.note or "").strip()[:_MAX_NOTE_CHARS] or None,
        by=(payload.by or "").strip()[:_MAX_BY_CHARS] or "dashboard",
        at=datetime.now(timezone.utc).isoformat(),
    )
    try:
        updated = run_store.save_feedback(run.id, feedback)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return {"ok": True, "run": updated}


@runs_router.get("/{run_id}/chain")
def get_run_chain(run_id: str):
    """All runs in the same chat thread, oldest first."""
    run = _resolve_run(run_id)
    return {"chain": run_store.get_run_chain(run.channelId, run.threadTs)}
