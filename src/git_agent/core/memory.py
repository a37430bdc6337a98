"""Append-only event log and the project state projected from it.

The log is the only persistent substrate. Current state is derived from it by
scanning newest-first and keeping, per category, the first entry that parses
cleanly. Malformed entries are skipped so a single corrupt payload never blocks
recovery.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from git_agent.core.tasks import TaskQueue
from git_agent.db.engine import get_db
from git_agent.db.models import LogEntry, Phase, ProjectSpec, RepositoryRef, Task

logger = logging.getLogger(__name__)

INITIALIZATION_MARKER = "initializationMarker"
PROJECT_SPEC = "projectSpec"
REPOSITORY_INFO = "repositoryInfo"
TASK_QUEUE_UPDATE = "taskQueueUpdate"
COMPLETION_MARKER = "completionMarker"

TASK_PROGRESS = "taskProgress"
CYCLE_FAILURE = "cycleFailure"
RESET_MARKER = "resetMarker"

PROGRESS_COMPLETED = "completed"

PROJECTED_KINDS = (
    INITIALIZATION_MARKER,
    PROJECT_SPEC,
    REPOSITORY_INFO,
    TASK_QUEUE_UPDATE,
    COMPLETION_MARKER,
)


@dataclass
class ProjectState:
    phase: Phase = Phase.UNINITIALIZED
    spec: ProjectSpec | None = None
    task_queue: TaskQueue = field(default_factory=TaskQueue)
    repository: RepositoryRef | None = None
    last_updated: datetime | None = None

    @property
    def remaining_tasks(self) -> int:
        return len(self.task_queue)

    def to_dict(self) -> dict:
        next_task = self.task_queue.peek_front()
        return {
            "phase": self.phase.value,
            "projectSpec": self.spec.to_dict() if self.spec else None,
            "repository": self.repository.to_dict() if self.repository else None,
            "remainingTasks": [t.to_dict() for t in self.task_queue],
            "nextTask": next_task.title if next_task else None,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


# ── Event log ─────────────────────────────────────────────────────────────────


def append_entry(db: sqlite3.Connection, kind: str, payload: Any) -> LogEntry:
    """Append one entry. Entries are never updated afterwards."""
    return append_entries(db, [(kind, payload)])[0]


def append_entries(db: sqlite3.Connection, items: list[tuple[str, Any]]) -> list[LogEntry]:
    """Append several entries in one transaction, all or none."""
    rows = [(kind, json.dumps(payload)) for kind, payload in items]
    ids = []
    try:
        for row in rows:
            cursor = db.execute("INSERT INTO events (kind, payload) VALUES (?, ?)", row)
            ids.append(cursor.lastrowid)
        db.commit()
    except sqlite3.Error:
        db.rollback()
        raise
    return [get_entry(db, entry_id) for entry_id in ids]


def get_entry(db: sqlite3.Connection, entry_id: int) -> LogEntry | None:
    row = db.execute("SELECT * FROM events WHERE id = ?", (entry_id,)).fetchone()
    if not row:
        return None
    return _row_to_entry(row)


def list_entries(
    db: sqlite3.Connection,
    kinds: tuple[str, ...] | None = None,
    limit: int | None = None,
    newest_first: bool = False,
) -> list[LogEntry]:
    """List log entries, optionally restricted to some kinds."""
    sql = "SELECT * FROM events"
    params: list = []

    if kinds:
        sql += f" WHERE kind IN ({', '.join('?' for _ in kinds)})"
        params.extend(kinds)

    sql += " ORDER BY id DESC" if newest_first else " ORDER BY id ASC"

    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    rows = db.execute(sql, params).fetchall()
    return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: sqlite3.Row) -> LogEntry:
    return LogEntry(
        id=row["id"],
        kind=row["kind"],
        payload=row["payload"],
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val).replace(tzinfo=timezone.utc)


class EventLog:
    """Event log bound to a database file. Each call opens its own connection."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def append(self, kind: str, payload: Any) -> LogEntry | None:
        """Append an entry, logging instead of raising on failure."""
        entries = self.append_batch([(kind, payload)])
        return entries[0] if entries else None

    def append_batch(self, items: list[tuple[str, Any]]) -> list[LogEntry]:
        """Append entries atomically. Returns [] after logging a failure."""
        try:
            with get_db(self.db_path) as db:
                return append_entries(db, items)
        except (sqlite3.Error, TypeError, ValueError):
            logger.exception(
                "Failed to append %s to the event log", ", ".join(kind for kind, _ in items)
            )
            return []

    def entries(
        self,
        kinds: tuple[str, ...] | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[LogEntry]:
        with get_db(self.db_path) as db:
            return list_entries(db, kinds=kinds, limit=limit, newest_first=newest_first)


# ── Projection ────────────────────────────────────────────────────────────────


def decode_entry(entry: LogEntry) -> Any:
    """Parse a projected entry into its typed value. Raises ValueError when malformed."""
    try:
        data = json.loads(entry.payload)
    except (TypeError, ValueError) as e:
        raise ValueError(f"entry {entry.id} is not valid JSON") from e

    if entry.kind == PROJECT_SPEC:
        return ProjectSpec.from_dict(data)
    if entry.kind == REPOSITORY_INFO:
        return RepositoryRef.from_dict(data)
    if entry.kind == TASK_QUEUE_UPDATE:
        if not isinstance(data, dict) or not isinstance(data.get("remainingTasks"), list):
            raise ValueError("taskQueueUpdate needs a remainingTasks list")
        return [Task.from_dict(t) for t in data["remainingTasks"]]
    if entry.kind == INITIALIZATION_MARKER:
        if not isinstance(data, dict) or not isinstance(data.get("status"), str):
            raise ValueError("initializationMarker needs a status")
        return data["status"] == "done"
    if entry.kind == COMPLETION_MARKER:
        if not isinstance(data, dict) or not isinstance(data.get("completed"), bool):
            raise ValueError("completionMarker needs a completed flag")
        return data["completed"]
    raise ValueError(f"entry kind {entry.kind!r} is not projected")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StateProjection:
    """Current project state, cached in memory and rebuilt from the log when cold.

    Only the Orchestrator calls the write methods. Every write appends to the log
    first and then updates the cached state in place.
    """

    def __init__(self, event_log: EventLog):
        self.event_log = event_log
        self._cache: ProjectState | None = None
        self._lock = threading.RLock()

    @property
    def is_warm(self) -> bool:
        return self._cache is not None

    def project(self) -> ProjectState:
        with self._lock:
            if self._cache is None:
                self._cache = self.scan()
            return self._cache

    def invalidate(self):
        with self._lock:
            self._cache = None

    def scan(self) -> ProjectState:
        """Rebuild state from the log, newest entry first, stopping at the last reset."""
        found: dict[str, Any] = {}
        last_updated = None

        for entry in self.event_log.entries(kinds=PROJECTED_KINDS + (RESET_MARKER,), newest_first=True):
            if entry.kind == RESET_MARKER:
                break
            if entry.kind in found:
                continue
            try:
                found[entry.kind] = decode_entry(entry)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.debug("Skipping malformed %s entry %s: %s", entry.kind, entry.id, e)
                continue
            if last_updated is None:
                last_updated = entry.created_at
            if len(found) == len(PROJECTED_KINDS):
                break

        spec = found.get(PROJECT_SPEC)
        repository = found.get(REPOSITORY_INFO)
        if found.get(INITIALIZATION_MARKER) or (spec is not None and repository is not None):
            phase = Phase.COMPLETED if found.get(COMPLETION_MARKER) else Phase.ACTIVE
        else:
            phase = Phase.UNINITIALIZED

        state = ProjectState(
            phase=phase,
            spec=spec,
            task_queue=TaskQueue(found.get(TASK_QUEUE_UPDATE, [])),
            repository=repository,
            last_updated=last_updated,
        )
        logger.info(
            "Recovered project state from log: phase=%s, %d remaining tasks",
            state.phase.value,
            state.remaining_tasks,
        )
        return state

    def find_saved_queue(self) -> list[Task]:
        """Most recent non-empty task queue since the last reset, minus tasks already committed."""
        done: set[str] = set()
        queues: list[list[Task]] = []
        kinds = (TASK_QUEUE_UPDATE, TASK_PROGRESS, RESET_MARKER)
        for entry in self.event_log.entries(kinds=kinds, newest_first=True):
            if entry.kind == RESET_MARKER:
                break
            try:
                if entry.kind == TASK_PROGRESS:
                    data = json.loads(entry.payload)
                    if data.get("status") == PROGRESS_COMPLETED:
                        done.add(data["task"])
                else:
                    queues.append(decode_entry(entry))
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.debug("Skipping malformed %s entry %s: %s", entry.kind, entry.id, e)

        for tasks in queues:
            pending = [t for t in tasks if t.title not in done]
            if pending:
                return pending
        return []

    # ── Writes ──

    def save_setup(
        self,
        spec: ProjectSpec,
        repository: RepositoryRef,
        tasks: list[Task],
        replace_reason: str | None = None,
    ) -> ProjectState:
        """Persist a finished setup in one write. With ``replace_reason`` the
        previous project is tombstoned in the same write.
        """
        items: list[tuple[str, Any]] = []
        if replace_reason:
            items.append((RESET_MARKER, {"reason": replace_reason}))
        items += [
            (TASK_QUEUE_UPDATE, _queue_payload(tasks)),
            (PROJECT_SPEC, spec.to_dict()),
            (REPOSITORY_INFO, repository.to_dict()),
            (INITIALIZATION_MARKER, {"status": "done"}),
        ]
        with self._lock:
            self.event_log.append_batch(items)
            self._cache = ProjectState(
                phase=Phase.ACTIVE,
                spec=spec,
                task_queue=TaskQueue(tasks),
                repository=repository,
                last_updated=_now(),
            )
            return self._cache

    def pop_task(self, title: str, details: dict | None = None) -> Task | None:
        """Remove a committed task, recording its progress when ``details`` is given.

        Progress, the shorter queue and, once the queue is empty, the completion
        marker go to the log in one write.
        """
        with self._lock:
            state = self.project()
            items: list[tuple[str, Any]] = []
            if details is not None:
                items.append((TASK_PROGRESS, _progress_payload(title, PROGRESS_COMPLETED, details)))
            removed = state.task_queue.pop_front(title)
            if removed is None:
                if items:
                    self.event_log.append_batch(items)
                return None
            items.append((TASK_QUEUE_UPDATE, _queue_payload(state.task_queue.to_list())))
            if not state.task_queue and state.phase != Phase.COMPLETED:
                items.append((COMPLETION_MARKER, _completion_payload()))
                state.phase = Phase.COMPLETED
            self.event_log.append_batch(items)
            state.last_updated = _now()
            return removed

    def replace_queue(self, tasks: list[Task]):
        with self._lock:
            state = self.project()
            state.task_queue.replace_all(tasks)
            self.event_log.append(TASK_QUEUE_UPDATE, _queue_payload(tasks, recovered=True))
            state.last_updated = _now()

    def mark_completed(self) -> bool:
        """Flip the project to completed. Returns False when it already was."""
        with self._lock:
            state = self.project()
            if state.phase == Phase.COMPLETED:
                return False
            self.event_log.append(COMPLETION_MARKER, _completion_payload())
            state.phase = Phase.COMPLETED
            state.last_updated = _now()
            return True

    def reset_completion(self) -> bool:
        with self._lock:
            state = self.project()
            if state.phase != Phase.COMPLETED:
                return False
            self.event_log.append(COMPLETION_MARKER, {"completed": False})
            state.phase = Phase.ACTIVE
            state.last_updated = _now()
            return True

    def record_progress(self, task_title: str, status: str, details: dict | None = None):
        self.event_log.append(
            TASK_PROGRESS,
            _progress_payload(task_title, status, details),
        )

    def record_failure(self, task_title: str | None, error: BaseException):
        self.event_log.append(
            CYCLE_FAILURE,
            {"task": task_title, "error": str(error), "errorType": type(error).__name__},
        )

    def reset(self, reason: str = "manual reset"):
        """Forget the current project. History stays in the log behind a tombstone."""
        with self._lock:
            self.event_log.append(RESET_MARKER, {"reason": reason})
            self._cache = ProjectState(last_updated=_now())


def _queue_payload(tasks: list[Task], recovered: bool = False) -> dict:
    payload: dict[str, Any] = {"remainingTasks": [t.to_dict() for t in tasks], "totalTasks": len(tasks)}
    if recovered:
        payload["recovered"] = True
    return payload


def _completion_payload() -> dict:
    return {"completed": True, "completedAt": _now().isoformat()}


def _progress_payload(task_title: str, status: str, details: dict | None) -> dict:
    return {"task": task_title, "status": status, "details": details or {}}
