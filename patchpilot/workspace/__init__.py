"""
patchpilot Workspace

Thin wrapper over the git CLI for one cloned working copy: branch,
stage, commit, push. Every call is a single external git invocation;
nothing here retries or undoes a step that already happened.
"""

from __future__ import annotations

import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from patchpilot.errors import GitOperationError

_CREDENTIALS_IN_URL = re.compile(r"(https?://)[^/@\s]+@")


class WorkspaceError(GitOperationError):
    pass


def redact(text: str) -> str:
    """Hide any credential embedded in an https URL."""
    return _CREDENTIALS_IN_URL.sub(r"\1***@", text)


def authenticated_url(remote_url: str, token: str | None) -> str:
    """Embed the access token in an https remote URL. Other URLs pass through."""
    if not token or not remote_url.startswith("https://"):
        return remote_url
    return remote_url.replace("https://", f"https://{token}@", 1)


def branch_name(prefix: str, task_id: str) -> str:
    """`<prefix>-<task-id>-<epoch-ms>`. Uniqueness is not checked."""
    safe_id = re.sub(r"[^A-Za-z0-9._-]+", "-", task_id).strip("-") or "task"
    return f"{prefix}-{safe_id}-{int(time.time() * 1000)}"


def run_git(*args: str, cwd: Path | None = None, check: bool = True, capture: bool = False) -> str:
    cmd = ["git", *args]
    # No timeout: a hung remote hangs the run
    result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    if check and result.returncode != 0:
        raise WorkspaceError(f"Git failed: {redact(' '.join(cmd))}\n{redact(result.stderr.strip())}")
    return result.stdout if capture else ""


@dataclass
class Branch:
    name: str
    base_sha: str


class Workspace:
    """
    A cloned working copy. Must contain `.git`.
    """

    def __init__(
        self,
        path: Path,
        author_name: str = "patchpilot",
        author_email: str = "patchpilot@users.noreply.github.com",
    ):
        self.path = path.resolve()
        self.author_name = author_name
        self.author_email = author_email
        if not (self.path / ".git").exists():
            raise WorkspaceError(f"Not a git working copy: {self.path}")

    def head_sha(self) -> str:
        return self._git("rev-parse", "HEAD", capture=True).strip()

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD", capture=True).strip()

    def create_branch(self, name: str) -> Branch:
        base_sha = self.head_sha()
        self._git("checkout", "-b", name)
        logger.info(f"[WORKSPACE] Branch {name} from {base_sha[:8]}")
        return Branch(name=name, base_sha=base_sha)

    def has_changes(self) -> bool:
        return bool(self._git("status", "--porcelain", capture=True).strip())

    def commit(self, message: str) -> str | None:
        """Stage everything and commit. None when there is nothing to commit."""
        self._git("add", "-A")
        if not self.has_changes():
            logger.info("[WORKSPACE] Nothing to commit.")
            return None

        self._git(
            "-c", f"user.name={self.author_name}",
            "-c", f"user.email={self.author_email}",
            "commit", "-m", message,
        )
        sha = self.head_sha()
        logger.info(f"[WORKSPACE] Committed {sha[:8]}")
        return sha

    def diff_stat(self, base_sha: str) -> str:
        return self._git("diff", "--stat", base_sha, "HEAD", capture=True, check=False).strip()

    def push(self, remote_url: str, branch: str, token: str | None = None) -> None:
        """
        Push `branch` to `remote_url` with the token embedded in the URL,
        then point the branch's upstream at `origin` so the token never
        lands in .git/config.
        """
        url = authenticated_url(remote_url, token)
        self._git("push", url, f"HEAD:refs/heads/{branch}")
        self._git("config", f"branch.{branch}.remote", "origin")
        self._git("config", f"branch.{branch}.merge", f"refs/heads/{branch}")
        logger.info(f"[WORKSPACE] Pushed {branch} → {redact(url)}")

    def _git(self, *args: str, check: bool = True, capture: bool = False) -> str:
        return run_git(*args, cwd=self.path, check=check, capture=capture)
