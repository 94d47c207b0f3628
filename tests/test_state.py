import threading

import pytest

from patchpilot.errors import TaskAlreadyProcessing
from patchpilot.state import Status, StatusStore, Task, load_tasks


def test_unknown_task_is_not_started():
    store = StatusStore()
    assert store.get("nope").status == Status.NOT_STARTED
    assert store.get("nope").to_public() == {"status": "not_started"}
    assert not store.is_processing("nope")


def test_lifecycle_completed():
    store = StatusStore()
    store.begin("t1")
    assert store.is_processing("t1")

    store.complete("t1", {"files_changed": ["a.py"]})
    public = store.get("t1").to_public()
    assert public["status"] == "completed"
    assert public["result"] == {"files_changed": ["a.py"]}
    assert "startedAt" in public and "completedAt" in public


def test_lifecycle_error():
    store = StatusStore()
    store.begin("t1")
    store.fail("t1", "ParseError: nothing")
    public = store.get("t1").to_public()
    assert public["status"] == "error"
    assert public["error"] == "ParseError: nothing"


def test_begin_rejects_in_flight_id_but_allows_rerun():
    store = StatusStore()
    store.begin("t1")
    with pytest.raises(TaskAlreadyProcessing):
        store.begin("t1")

    store.complete("t1", {})
    store.begin("t1")
    assert store.is_processing("t1")


def test_begin_is_atomic_across_threads():
    store = StatusStore()
    accepted = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            store.begin("same")
            accepted.append(1)
        except TaskAlreadyProcessing:
            pass

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(accepted) == 1


def test_returned_entries_are_copies():
    store = StatusStore()
    entry = store.begin("t1")
    entry.status = Status.ERROR
    assert store.is_processing("t1")


def test_evict_and_all():
    store = StatusStore()
    store.begin("a")
    store.begin("b")
    store.complete("b", {})
    assert set(store.all()) == {"a", "b"}

    assert store.evict_finished("b") is True
    assert store.evict_finished("b") is False
    assert set(store.all()) == {"a"}


def test_evict_refuses_a_run_in_flight():
    store = StatusStore()
    store.begin("a")
    with pytest.raises(TaskAlreadyProcessing):
        store.evict_finished("a")
    assert store.is_processing("a")

    store.fail("a", "boom")
    assert store.evict_finished("a") is True


def test_task_title_and_aliases():
    task = Task(id="7", repoUrl="https://github.com/acme/site", description="Add a footer\n\nwith links")
    assert task.task_id == "7"
    assert task.repo_url == "https://github.com/acme/site"
    assert task.title == "Add a footer"
    assert task.target_file is None


def test_task_from_request_generates_id():
    task = Task.from_request("https://github.com/acme/site", "do it")
    assert task.task_id.startswith("task-")


def test_load_tasks(tmp_path):
    path = tmp_path / "tasks.yaml"
    path.write_text(
        "tasks:\n"
        "  - repoUrl: https://github.com/acme/site\n"
        "    description: add a Navbar component\n"
        "  - id: custom\n"
        "    repoUrl: https://github.com/acme/api\n"
        "    description: add `Button` import in `src/App.js`\n"
        "    targetFile: src/App.js\n"
    )
    first, second = load_tasks(path)
    assert first.task_id == "tasks-1"
    assert second.task_id == "custom"
    assert second.target_file == "src/App.js"
