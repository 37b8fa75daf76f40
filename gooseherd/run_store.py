"""File-backed run store with follow-up chain linkage and feedback."""
from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from gooseherd import config
from gooseherd.models import IN_PROGRESS_STATUSES, NewRunInput, RunFeedback, RunRecord

logger = logging.getLogger("gooseherd.store")

_UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_SHORT_ID_PATTERN = re.compile(r"[0-9a-f]{6,32}", re.IGNORECASE)
_IDENTIFIER_PUNCTUATION = re.compile(r"[`<>()\[\]{}]")


class RunNotFoundError(KeyError):
    """Raised when an update targets a run id that is not in the store."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_identifier(raw: str) -> str:
    """Reduce user input (links, mentions, short ids) to a lookup key."""
    trimmed = (raw or "").strip()
    if not trimmed:
        return ""
    uuid_match = _UUID_PATTERN.search(trimmed)
    if uuid_match:
        return uuid_match.group(0).lower()
    short_match = _SHORT_ID_PATTERN.search(trimmed)
    if short_match:
        return short_match.group(0).lower()
    return _IDENTIFIER_PUNCTUATION.sub("", trimmed).lower()


def short_run_id(run_id: str) -> str:
    return run_id[:8]


class RunStore:
    """Persists RunRecords to a single JSON file.

    One process owns the file; writes are serialized with a lock and always
    rewrite the whole document.
    """

    def __init__(self, storage_path: Path, work_root: Path | None = None):
        self.storage_path = storage_path
        self.work_root = work_root if work_root is not None else config.WORK_ROOT
        self._lock = threading.RLock()

    def init(self) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.storage_path.exists():
            self._save([])

    def _load(self) -> list[RunRecord]:
        """Load runs from JSON storage."""
        if not self.storage_path.exists():
            return []
        try:
            content = self.storage_path.read_text(encoding="utf-8")
            if not content.strip():
                return []
            data = json.loads(content)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load runs file: {e}")
            return []

        raw_runs = data.get("runs") if isinstance(data, dict) else None
        if not isinstance(raw_runs, list):
            return []
        runs: list[RunRecord] = []
        for r_data in raw_runs:
            try:
                runs.append(RunRecord.model_validate(r_data))
            except ValidationError as e:
                logger.error(f"Failed to load run: {e}")
        return runs

    def _save(self, runs: list[RunRecord]) -> None:
        data = {"runs": [run.model_dump() for run in runs]}
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.storage_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(self.storage_path)

    # ── Writes ────────────────────────────────────────────────────

    def create_run(
        self,
        run_input: NewRunInput,
        branch_prefix: str | None = None,
        existing_branch_name: str | None = None,
    ) -> RunRecord:
        with self._lock:
            runs = self._load()
            run_id = str(uuid.uuid4())
            prefix = branch_prefix or config.BRANCH_PREFIX
            branch_name = existing_branch_name or f"{prefix}/{short_run_id(run_id)}"

            root_run_id: Optional[str] = None
            chain_index = 0
            if run_input.parentRunId:
                parent = next((r for r in runs if r.id == run_input.parentRunId), None)
                if parent:
                    root_run_id = parent.rootRunId or parent.id
                    chain_index = parent.chainIndex + 1

            record = RunRecord(
                id=run_id,
                status="queued",
                phase="queued",
                repoSlug=run_input.repoSlug,
                task=run_input.task,
                baseBranch=run_input.baseBranch,
                branchName=branch_name,
                requestedBy=run_input.requestedBy,
                channelId=run_input.channelId,
                threadTs=run_input.threadTs,
                createdAt=_now_iso(),
                parentRunId=run_input.parentRunId,
                rootRunId=root_run_id,
                chainIndex=chain_index,
                parentBranchName=existing_branch_name,
                feedbackNote=run_input.feedbackNote,
            )
            runs.append(record)
            self._save(runs)
            logger.info("Created run %s for %s (chain index %d)", short_run_id(run_id), record.repoSlug, chain_index)
            return record

    def update_run(self, run_id: str, **fields: Any) -> RunRecord:
        with self._lock:
            runs = self._load()
            for idx, current in enumerate(runs):
                if current.id != run_id:
                    continue
                updated = RunRecord.model_validate({**current.model_dump(), **fields})
                runs[idx] = updated
                self._save(runs)
                return updated
            raise RunNotFoundError(f"Run not found: {run_id}")

    def save_feedback(self, run_id: str, feedback: RunFeedback) -> RunRecord:
        return self.update_run(run_id, feedback=feedback.model_dump())

    def fail_in_progress_runs(self, reason: str) -> int:
        """Mark every unfinished run failed, e.g. after an unclean shutdown."""
        with self._lock:
            runs = self._load()
            count = 0
            for idx, run in enumerate(runs):
                if run.status not in IN_PROGRESS_STATUSES:
                    continue
                runs[idx] = run.model_copy(
                    update={"status": "failed", "phase": "failed", "finishedAt": _now_iso(), "error": reason}
                )
                count += 1
            if count:
                self._save(runs)
                logger.info("Failed %d in-progress runs: %s", count, reason)
            return count

    def recover_in_progress_runs(self, reason: str) -> list[RunRecord]:
        """Requeue every unfinished run and return the requeued records."""
        with self._lock:
            runs = self._load()
            recovered: list[RunRecord] = []
            for idx, run in enumerate(runs):
                if run.status not in IN_PROGRESS_STATUSES:
                    continue
                runs[idx] = run.model_copy(
                    update={"status": "queued", "phase": "queued", "startedAt": None, "finishedAt": None, "error": reason}
                )
                recovered.append(runs[idx])
            if recovered:
                self._save(runs)
                logger.info("Requeued %d in-progress runs: %s", len(recovered), reason)
            return recovered

    # ── Reads ─────────────────────────────────────────────────────

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return next((run for run in self._load() if run.id == run_id), None)

    def list_runs(self, limit: int = 100) -> list[RunRecord]:
        bounded = max(1, min(limit, 500))
        return list(reversed(self._load()[-bounded:]))

    def get_latest_run_for_thread(self, channel_id: str, thread_ts: str) -> Optional[RunRecord]:
        for run in reversed(self._load()):
            if run.channelId == channel_id and run.threadTs == thread_ts:
                return run
        return None

    def get_latest_run_for_channel(self, channel_id: str) -> Optional[RunRecord]:
        for run in reversed(self._load()):
            if run.channelId == channel_id:
                return run
        return None

    def get_run_chain(self, channel_id: str, thread_ts: str) -> list[RunRecord]:
        chain = [run for run in self._load() if run.channelId == channel_id and run.threadTs == thread_ts]
        return sorted(chain, key=lambda run: run.createdAt)

    def find_run_by_identifier(self, identifier: str) -> Optional[RunRecord]:
        normalized = normalize_identifier(identifier)
        if not normalized:
            return None
        runs = self._load()
        exact = next((run for run in runs if run.id == normalized), None)
        if exact:
            return exact
        prefix_matches = [run for run in runs if run.id.startswith(normalized)]
        if len(prefix_matches) == 1:
            return prefix_matches[0]
        return None

    def logs_path_for(self, run: RunRecord) -> Path:
        if run.logsPath:
            return Path(run.logsPath)
        return (self.work_root / run.id / config.RUN_LOG_NAME).resolve()

    def format_run_status(self, run: RunRecord) -> str:
        details = [
            f"Run: {short_run_id(run.id)}",
            f"Status: {run.status}",
            f"Phase: {run.phase or 'queued'}",
            f"Repo: {run.repoSlug}",
            f"Branch: {run.branchName}",
            f"Base: {run.baseBranch}",
            f"Requested by: <@{run.requestedBy}>",
            f"Created at: {run.createdAt}",
        ]
        if run.prUrl:
            details.append(f"PR: {run.prUrl}")
        if run.error:
            details.append(f"Error: {run.error}")
        if run.logsPath:
            details.append(f"Logs: {run.logsPath}")
        if run.commitSha:
            details.append(f"Commit: {run.commitSha}")
        if run.changedFiles:
            details.append(f"Changed files: {len(run.changedFiles)}")
        if run.feedback:
            note = f" ({run.feedback.note})" if run.feedback.note else ""
            details.append(f"Feedback: {run.feedback.rating}{note}")
        return "\n".join(details)


# Global instance backed by runs.json in the configured data directory
run_store = RunStore(config.RUNS_FILE)
