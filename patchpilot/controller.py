"""
patchpilot Controller — the pipeline runner

It is NOT smart. It is deterministic. For one task it runs:

    Acquire → Assemble context → Generate → Parse → Apply → Land

and records every transition on the StatusStore. A failing task ends
as an `error` status with a message; it never escapes to the caller's
thread. Nothing is retried and nothing is rolled back.
"""

from __future__ import annotations

import threading
from collections import Counter
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from patchpilot.acquisition import RepositoryAcquirer, parse_repo_url
from patchpilot.agents import ChangeGenerator, build_generator
from patchpilot.config_loader import PatchPilotConfig
from patchpilot.diffparse import parse_diff
from patchpilot.errors import AcquisitionError, PipelineError
from patchpilot.github import GitHubClient
from patchpilot.indexer import ContextAssembler, LocalSource, RemoteSource
from patchpilot.patcher import ApplyMode, ApplyReport, PatchApplier, get_matcher
from patchpilot.state import StatusStore, Task
from patchpilot.workflow import LocalCloneWorkflow, RemoteApiWorkflow
from patchpilot.workspace import Workspace, branch_name

NO_CHANGES = "No changes generated from task description"

ClientFactory = Callable[..., GitHubClient]


class Controller:
    """
    Owns the StatusStore and the shared, stateless pipeline parts.
    One instance serves every task; per-run state lives on the stack.
    """

    def __init__(
        self,
        config: PatchPilotConfig,
        store: StatusStore | None = None,
        generator: ChangeGenerator | None = None,
        client_factory: ClientFactory = GitHubClient,
    ):
        self.config = config
        self.store = store or StatusStore()
        self.generator = generator or build_generator(config)
        self.client_factory = client_factory
        self.assembler = ContextAssembler(config.context)
        self.acquirer = RepositoryAcquirer(Path(config.workspace.repos_dir))

        self._active_dirs: Counter[str] = Counter()
        self._active_lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    def run(self, task: Task) -> dict[str, Any]:
        """Mark the task processing, then execute it. Raises TaskAlreadyProcessing."""
        self.store.begin(task.task_id)
        return self.execute(task)

    def execute(self, task: Task) -> dict[str, Any]:
        """Run a task whose store entry is already `processing`."""
        mode = self.config.workflow.mode
        result: dict[str, Any] = {
            "task_id": task.task_id,
            "status": "processing",
            "mode": mode,
            "files_changed": [],
            "conflicts": [],
            "warnings": [],
        }
        logger.info(f"[PIPELINE] {task.task_id}: start ({mode} mode) — {task.title}")

        try:
            if mode == "remote":
                self._run_remote(task, result)
            else:
                self._run_local(task, result)
        except PipelineError as e:
            message = f"{type(e).__name__}: {e}"
            logger.error(f"[PIPELINE] {task.task_id}: {message}")
            result["status"] = "error"
            result["error"] = message
            stage = getattr(e, "stage", None)
            if stage:
                result["stage"] = stage
            # Branch / commit that already exist when a late step failed
            details = getattr(e, "details", None) or {}
            result.update({k: v for k, v in details.items() if v is not None})
            self.store.fail(task.task_id, message, result=result)
            return result
        except Exception as e:
            logger.exception(f"[PIPELINE] {task.task_id}: unexpected failure")
            result["status"] = "error"
            result["error"] = f"{type(e).__name__}: {e}"
            self.store.fail(task.task_id, result["error"], result=result)
            return result

        result["status"] = "completed"
        self.store.complete(task.task_id, result)
        logger.info(f"[PIPELINE] {task.task_id}: completed")
        return result

    # -----------------------------------------------------------------------
    # Modes
    # -----------------------------------------------------------------------

    def _run_local(self, task: Task, result: dict[str, Any]) -> None:
        target = str(self.acquirer.target_dir(task.repo_url))
        with self._active_lock:
            if self._active_dirs[target]:
                logger.warning(
                    f"[PIPELINE] {task.task_id}: another task is using {target}; "
                    "the runs share one working copy and may interfere"
                )
            self._active_dirs[target] += 1

        try:
            path = self.acquirer.clone(task.repo_url)
            request = self.assembler.assemble(task, LocalSource(path))
            patch = parse_diff(self.generator.generate(request))
            report = self._applier_for(task).apply_to_tree(path, patch)
            self._record_apply(report, result)
            if not report.changed:
                result["message"] = NO_CHANGES
                return

            workspace = Workspace(
                path,
                author_name=self.config.workflow.author_name,
                author_email=self.config.workflow.author_email,
            )
            landed = LocalCloneWorkflow(workspace, self.config).run(
                task,
                branch_name(self.config.workflow.branch_prefix, task.task_id),
                remote_url=task.repo_url,
            )
            result.update(self._without_warnings(landed.to_dict()))
            result["warnings"].extend(landed.warnings)
            if landed.commit_sha is None:
                result["message"] = NO_CHANGES
        finally:
            with self._active_lock:
                self._active_dirs[target] -= 1

    def _run_remote(self, task: Task, result: dict[str, Any]) -> None:
        gh = self.config.github
        ref = parse_repo_url(task.repo_url)
        owner = gh.owner or ref.owner
        repo = gh.repo or ref.name
        if not owner:
            raise AcquisitionError(f"No repository owner for {task.repo_url}; set GITHUB_OWNER")

        with self.client_factory(owner, repo, token=gh.token, api_url=gh.api_url) as client:
            self.acquirer.confirm_remote(client)
            source = RemoteSource(client, self.config.workflow.base_branch)
            request = self.assembler.assemble(task, source)
            patch = parse_diff(self.generator.generate(request))
            # Originals come from the tree, not the context, so skipped files still apply
            report = self._applier_for(task).plan(patch, source.read)
            self._record_apply(report, result)
            if not report.changed:
                result["message"] = NO_CHANGES
                return

            if not gh.token:
                warning = "No GITHUB_TOKEN set; remote commit and pull request skipped"
                logger.warning(f"[PIPELINE] {task.task_id}: {warning}")
                result["warnings"].append(warning)
                return

            workflow = RemoteApiWorkflow(client, self.config)
            landed = workflow.run(
                task,
                branch_name(self.config.workflow.branch_prefix, task.task_id),
                report.changed,
                created=report.created,
            )
            result.update(self._without_warnings(landed.to_dict()))

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _applier_for(self, task: Task) -> PatchApplier:
        mode = ApplyMode.ATOMIC if task.target_file else ApplyMode(self.config.apply.mode)
        return PatchApplier(mode=mode, matcher=get_matcher(self.config.apply.matcher))

    @staticmethod
    def _record_apply(report: ApplyReport, result: dict[str, Any]) -> None:
        summary = report.summary()
        result["files_changed"] = summary["files_changed"]
        result["conflicts"] = summary["conflicts"]
        if report.conflicts:
            result["warnings"].append(f"{len(report.conflicts)} file(s) left untouched due to conflicts")

    @staticmethod
    def _without_warnings(landed: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in landed.items() if k != "warnings"}
