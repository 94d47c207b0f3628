import pytest

from conftest import GatedGenerator
from patchpilot.controller import Controller
from patchpilot.errors import TaskAlreadyProcessing
from patchpilot.parallel import TaskQueue, run_batch
from patchpilot.state import Status, Task


def test_submit_marks_processing_and_completes(origin, config):
    generator = GatedGenerator()
    queue = TaskQueue(Controller(config, generator=generator), max_workers=2)
    task = Task(id="q1", repoUrl=str(origin), description="capitalise the readme")
    try:
        queue.submit(task)
        assert queue.store.is_processing("q1")

        with pytest.raises(TaskAlreadyProcessing):
            queue.submit(task)

        generator.gate.set()
        result = queue.wait("q1", timeout=60)
    finally:
        generator.gate.set()
        queue.shutdown()

    assert result["status"] == "completed"
    assert queue.store.get("q1").status == Status.COMPLETED


def test_wait_for_unknown_task(config):
    queue = TaskQueue(Controller(config), max_workers=1)
    try:
        assert queue.wait("nope") is None
    finally:
        queue.shutdown()


def test_submit_after_shutdown_fails_the_task(origin, config):
    queue = TaskQueue(Controller(config), max_workers=1)
    queue.shutdown()

    with pytest.raises(RuntimeError):
        queue.submit(Task(id="late", repoUrl=str(origin), description="x"))
    assert queue.store.get("late").status == Status.ERROR


def test_run_batch_handles_distinct_repos_concurrently(origin, tmp_path, config):
    other = tmp_path / "other.git"
    other.symlink_to(origin, target_is_directory=True)
    third = tmp_path / "third.git"
    third.symlink_to(origin, target_is_directory=True)
    tasks = [
        Task(id="a", repoUrl=str(origin), description="add `Button` import in `src/App.js`"),
        Task(id="b", repoUrl=str(other), description="add `Header` import in `src/App.js`"),
        Task(id="c", repoUrl=str(third), description="make it faster"),
    ]

    results = run_batch(Controller(config), tasks, max_workers=2)

    by_id = {r["task_id"]: r for r in results}
    assert by_id["a"]["status"] == "completed"
    assert by_id["b"]["status"] == "completed"
    assert by_id["c"]["status"] == "error"


def test_finished_runs_release_their_futures(tmp_path, config):
    generator = GatedGenerator()
    generator.gate.set()
    queue = TaskQueue(Controller(config, generator=generator), max_workers=4)
    for n in range(20):
        queue.submit(Task(id=f"t{n}", repoUrl=str(tmp_path / "missing.git"), description="x"))
    queue.shutdown(wait=True)

    assert queue.in_flight == 0
    assert queue.future("t0") is None
    # Results stay reachable through the store until evicted
    assert queue.wait("t0")["status"] == "error"
    for n in range(20):
        assert queue.store.evict_finished(f"t{n}") is True
    assert queue.wait("t0") is None
