"""
Task model and the in-memory Status Tracker.

The store is an explicit object: the pipeline runner owns it and hands
it to the queue and the API. Nothing here survives a restart.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from patchpilot.errors import TaskAlreadyProcessing


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Task(BaseModel):
    """A unit of work handed to the pipeline by the board."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(..., alias="id")
    description: str = Field(..., min_length=1)
    repo_url: str = Field(..., alias="repoUrl", min_length=1)
    title: str = ""
    target_file: str | None = Field(default=None, alias="targetFile")
    status: str = "todo"

    @model_validator(mode="after")
    def derive_title(self) -> "Task":
        if not self.title:
            first_line = self.description.strip().splitlines()[0] if self.description.strip() else ""
            self.title = first_line[:72]
        return self

    @classmethod
    def from_request(
        cls,
        repo_url: str,
        description: str,
        task_id: str | None = None,
        **extra: Any,
    ) -> "Task":
        """Build a task for a bare submission; ids default to a millisecond stamp."""
        if not task_id:
            task_id = f"task-{int(_now().timestamp() * 1000)}"
        return cls(id=task_id, repoUrl=repo_url, description=description, **extra)

    @classmethod
    def from_yaml(cls, path: Path) -> "Task":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        data.setdefault("id", path.stem)
        return cls(**data)


def load_tasks(path: Path) -> list[Task]:
    """
    Read a batch file: a YAML list of tasks, or a mapping with a `tasks` list.
    Entries without an id get `<file-stem>-<n>`.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("tasks", [])
    tasks = []
    for n, entry in enumerate(data, start=1):
        entry = dict(entry)
        entry.setdefault("id", f"{path.stem}-{n}")
        tasks.append(Task(**entry))
    return tasks


class Status(str, Enum):
    NOT_STARTED = "not_started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ProcessingStatus(BaseModel):
    task_id: str
    status: Status = Status.NOT_STARTED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_public(self) -> dict[str, Any]:
        """The `{status, result?, error?}` shape read by callers."""
        payload: dict[str, Any] = {"status": self.status.value}
        if self.started_at:
            payload["startedAt"] = self.started_at.isoformat()
        if self.completed_at:
            payload["completedAt"] = self.completed_at.isoformat()
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        return payload


class StatusStore:
    """Thread-safe task id -> ProcessingStatus map."""

    def __init__(self):
        self._entries: dict[str, ProcessingStatus] = {}
        self._lock = threading.Lock()

    def begin(self, task_id: str) -> ProcessingStatus:
        """Atomically mark a task as processing. Rejects re-entry for the same id."""
        with self._lock:
            current = self._entries.get(task_id)
            if current and current.status == Status.PROCESSING:
                raise TaskAlreadyProcessing(task_id)
            entry = ProcessingStatus(
                task_id=task_id,
                status=Status.PROCESSING,
                started_at=_now(),
            )
            self._entries[task_id] = entry
            return entry.model_copy()

    def complete(self, task_id: str, result: dict[str, Any]) -> ProcessingStatus:
        return self._finish(task_id, Status.COMPLETED, result=result)

    def fail(self, task_id: str, error: str, result: dict[str, Any] | None = None) -> ProcessingStatus:
        return self._finish(task_id, Status.ERROR, result=result, error=error)

    def _finish(
        self,
        task_id: str,
        status: Status,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> ProcessingStatus:
        with self._lock:
            previous = self._entries.get(task_id)
            entry = ProcessingStatus(
                task_id=task_id,
                status=status,
                started_at=previous.started_at if previous else None,
                completed_at=_now(),
                result=result,
                error=error,
            )
            self._entries[task_id] = entry
            return entry.model_copy()

    def get(self, task_id: str) -> ProcessingStatus:
        with self._lock:
            entry = self._entries.get(task_id)
            if entry is None:
                return ProcessingStatus(task_id=task_id)
            return entry.model_copy()

    def is_processing(self, task_id: str) -> bool:
        return self.get(task_id).status == Status.PROCESSING

    def evict_finished(self, task_id: str) -> bool:
        """
        Drop an entry unless its run is in flight, in one step.
        Raises TaskAlreadyProcessing; returns False if there was nothing to drop.
        """
        with self._lock:
            entry = self._entries.get(task_id)
            if entry is None:
                return False
            if entry.status == Status.PROCESSING:
                raise TaskAlreadyProcessing(task_id)
            del self._entries[task_id]
            return True

    def all(self) -> dict[str, ProcessingStatus]:
        with self._lock:
            return {tid: entry.model_copy() for tid, entry in self._entries.items()}
