"""
patchpilot Task Queue

Runs tasks on a thread pool. `submit` marks the task processing before
it returns, so a second submission for the same id is rejected at once;
completion is observable through the returned Future or by polling the
StatusStore.
"""

from __future__ import annotations

import concurrent.futures
import functools
import threading
from typing import Any, Iterable

from loguru import logger
from rich.console import Console
from rich.table import Table

from patchpilot.controller import Controller
from patchpilot.errors import TaskAlreadyProcessing
from patchpilot.state import Task

console = Console()


class TaskQueue:
    def __init__(self, controller: Controller, max_workers: int = 4):
        self.controller = controller
        self.store = controller.store
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="patchpilot",
        )
        self._futures: dict[str, concurrent.futures.Future] = {}
        self._lock = threading.Lock()

    def submit(self, task: Task) -> concurrent.futures.Future:
        """Accept a task. Raises TaskAlreadyProcessing for an id that is in flight."""
        self.store.begin(task.task_id)
        try:
            future = self._executor.submit(self.controller.execute, task)
        except RuntimeError as e:
            # Executor already shut down
            self.store.fail(task.task_id, f"Queue is not accepting work: {e}")
            raise
        with self._lock:
            self._futures[task.task_id] = future
        # Runs at once if the task already finished
        future.add_done_callback(functools.partial(self._release, task.task_id))
        logger.info(f"[QUEUE] Accepted {task.task_id}")
        return future

    def _release(self, task_id: str, future: concurrent.futures.Future) -> None:
        # The result already sits on the StatusStore
        with self._lock:
            if self._futures.get(task_id) is future:
                del self._futures[task_id]

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._futures)

    def future(self, task_id: str) -> concurrent.futures.Future | None:
        """The Future of a run still in flight; None once it has finished."""
        with self._lock:
            return self._futures.get(task_id)

    def wait(self, task_id: str, timeout: float | None = None) -> dict[str, Any] | None:
        """Block until the task finishes and return its result. None for an unknown task."""
        future = self.future(task_id)
        if future is not None:
            return future.result(timeout=timeout)
        return self.store.get(task_id).result

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; with `wait`, block until in-flight runs finish."""
        self._executor.shutdown(wait=wait)


def run_batch(controller: Controller, tasks: Iterable[Task], max_workers: int = 4) -> list[dict[str, Any]]:
    """Run every task to completion and print a summary table."""
    tasks = list(tasks)
    console.print(f"\n[bold]⚡ patchpilot batch — {len(tasks)} tasks, {max_workers} workers[/]\n")

    queue = TaskQueue(controller, max_workers=max_workers)
    results: list[dict[str, Any]] = []
    try:
        futures = {}
        for task in tasks:
            try:
                futures[queue.submit(task)] = task
            except TaskAlreadyProcessing as e:
                logger.error(f"[QUEUE] Rejected {task.task_id}: {e}")
                results.append({"task_id": task.task_id, "status": "error", "error": str(e)})

        for future in concurrent.futures.as_completed(futures):
            result = future.result()
            results.append(result)
            _log_task_completion(result)
    finally:
        queue.shutdown(wait=True)

    print_summary(results)
    return results


def _log_task_completion(result: dict) -> None:
    status = result.get("status", "unknown")
    color = "green" if status == "completed" else "red"
    console.print(f"  [{color}]{result.get('task_id', '?')}: {status}[/]")


def print_summary(results: list[dict]) -> None:
    table = Table(title="Batch Results", border_style="bright_green")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("PR / Branch")
    table.add_column("Files")

    for r in results:
        status = r.get("status", "unknown")
        color = "green" if status == "completed" else "red"
        landed = r.get("pull_request_url") or r.get("branch") or r.get("message") or r.get("error") or "—"
        table.add_row(
            r.get("task_id", "?"),
            f"[{color}]{status}[/]",
            str(landed)[:60],
            str(len(r.get("files_changed", []))),
        )

    console.print(table)
    successes = sum(1 for r in results if r.get("status") == "completed")
    console.print(f"\n[bold]{successes}/{len(results)} completed[/]")
