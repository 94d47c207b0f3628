"""
Git Workflow Orchestrator

Two ways to land a change:

  - LocalCloneWorkflow: branch, commit and push from a cloned working copy.
  - RemoteApiWorkflow: build blobs, a tree, a commit and a branch ref
    through the REST API, then open a pull request. No working copy.

Neither retries and neither undoes a step that already succeeded: objects
created before a failure stay behind.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterable

from loguru import logger

from patchpilot.config_loader import PatchPilotConfig
from patchpilot.errors import GitOperationError
from patchpilot.github import GitHubClient, tree_entry
from patchpilot.state import Task
from patchpilot.workspace import Workspace


def commit_message(task: Task) -> str:
    return f"Implement: {task.title}\n\n{task.description}"


def pull_request_title(task: Task, prefix: str = "") -> str:
    return f"{prefix}{task.title}"


def pull_request_body(
    task: Task,
    changes: dict[str, str | None],
    created: Iterable[str] = (),
) -> str:
    """`changes` as produced by the applier: None content means the path was deleted."""
    created = set(created)
    body = f"## Task Implementation\n\n{task.description}\n\n### Changes Made:\n"
    for path, content in changes.items():
        if content is None:
            verb = "Deleted"
        elif path in created:
            verb = "Added"
        else:
            verb = "Modified"
        body += f"- {verb} {path}\n"
    body += f"\n---\n*Auto-generated from task #{task.task_id}*\n"
    return body


@dataclass
class WorkflowResult:
    branch: str | None = None
    base_sha: str | None = None
    commit_sha: str | None = None
    pushed: bool = False
    pull_request_url: str | None = None
    pull_request_number: int | None = None
    stage: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Local clone
# ---------------------------------------------------------------------------

class LocalCloneWorkflow:
    def __init__(self, workspace: Workspace, config: PatchPilotConfig):
        self.workspace = workspace
        self.config = config

    def run(self, task: Task, branch: str, remote_url: str) -> WorkflowResult:
        result = WorkflowResult()

        if not self.workspace.has_changes():
            logger.info(f"[WORKFLOW] {task.task_id}: working copy is clean, nothing to land")
            return result

        created = self.workspace.create_branch(branch)
        result.branch = created.name
        result.base_sha = created.base_sha

        result.commit_sha = self.workspace.commit(commit_message(task))
        if result.commit_sha is None:
            return result

        token = self.config.github.token
        if not token and remote_url.startswith("https://"):
            warning = "No GITHUB_TOKEN set; commit kept locally, branch not pushed"
            logger.warning(f"[WORKFLOW] {task.task_id}: {warning}")
            result.warnings.append(warning)
            return result

        try:
            self.workspace.push(remote_url, created.name, token=token)
        except GitOperationError as e:
            logger.error(
                f"[WORKFLOW] {task.task_id}: push failed; "
                f"commit {result.commit_sha} kept on local branch {created.name}"
            )
            e.stage = e.stage or "push"
            e.details.update(branch=result.branch, base_sha=result.base_sha, commit_sha=result.commit_sha)
            raise
        result.pushed = True
        logger.info(f"[WORKFLOW] {task.task_id}: pushed {created.name}")
        return result


# ---------------------------------------------------------------------------
# Remote API
# ---------------------------------------------------------------------------

class WorkflowStage(str, Enum):
    IDLE = "idle"
    SHA_RESOLVED = "sha_resolved"
    BLOBS_CREATED = "blobs_created"
    TREE_BUILT = "tree_built"
    COMMIT_CREATED = "commit_created"
    REF_UPDATED = "ref_updated"
    PR_OPENED = "pr_opened"
    ERROR = "error"


class RemoteApiWorkflow:
    """
    Strictly sequential state machine:

        IDLE → SHA_RESOLVED → BLOBS_CREATED → TREE_BUILT
             → COMMIT_CREATED → REF_UPDATED → PR_OPENED

    Any failure moves to ERROR and stops; GitOperationError.stage names
    the step that failed.
    """

    def __init__(self, client: GitHubClient, config: PatchPilotConfig):
        self.client = client
        self.config = config
        self.stage = WorkflowStage.IDLE
        self.history: list[WorkflowStage] = [WorkflowStage.IDLE]

    def _advance(self, stage: WorkflowStage) -> None:
        self.stage = stage
        self.history.append(stage)
        logger.debug(f"[WORKFLOW] {self.client.full_name}: {stage.value}")

    def run(
        self,
        task: Task,
        branch: str,
        changes: dict[str, str | None],
        created: Iterable[str] = (),
    ) -> WorkflowResult:
        """`changes` maps path → new content, None deletes the path. `created` lists new paths."""
        if self.stage != WorkflowStage.IDLE:
            raise RuntimeError(f"Workflow already ran (stage {self.stage.value})")

        wf = self.config.workflow
        result = WorkflowResult(branch=branch)
        pending = WorkflowStage.SHA_RESOLVED
        try:
            base_sha = self.client.get_branch_sha(wf.base_branch)
            base_tree = self.client.get_commit_tree(base_sha)
            result.base_sha = base_sha
            self._advance(WorkflowStage.SHA_RESOLVED)

            pending = WorkflowStage.BLOBS_CREATED
            entries = []
            for path, content in changes.items():
                blob_sha = None if content is None else self.client.create_blob(content)
                entries.append(tree_entry(path, blob_sha))
            self._advance(WorkflowStage.BLOBS_CREATED)

            pending = WorkflowStage.TREE_BUILT
            tree_sha = self.client.create_tree(base_tree, entries)
            self._advance(WorkflowStage.TREE_BUILT)

            pending = WorkflowStage.COMMIT_CREATED
            result.commit_sha = self.client.create_commit(commit_message(task), tree_sha, [base_sha])
            self._advance(WorkflowStage.COMMIT_CREATED)

            pending = WorkflowStage.REF_UPDATED
            self.client.create_ref(branch, result.commit_sha)
            result.pushed = True
            self._advance(WorkflowStage.REF_UPDATED)

            pending = WorkflowStage.PR_OPENED
            pr = self.client.create_pull(
                title=pull_request_title(task, wf.pr_title_prefix),
                body=pull_request_body(task, changes, created),
                head=branch,
                base=wf.base_branch,
            )
            result.pull_request_url = pr.get("html_url")
            result.pull_request_number = pr.get("number")
            self._advance(WorkflowStage.PR_OPENED)
        except GitOperationError as e:
            self._fail(pending, e)
            e.details.update(base_sha=result.base_sha, commit_sha=result.commit_sha)
            if result.pushed:
                # The ref exists; only the pull request is missing
                e.details.update(branch=branch, pushed=True)
            raise

        result.stage = self.stage.value
        logger.info(f"[WORKFLOW] {task.task_id}: opened {result.pull_request_url}")
        return result

    def _fail(self, pending: WorkflowStage, error: GitOperationError) -> None:
        logger.error(f"[WORKFLOW] {self.client.full_name}: failed before {pending.value} ({error})")
        error.stage = pending.value
        self.stage = WorkflowStage.ERROR
        self.history.append(WorkflowStage.ERROR)
