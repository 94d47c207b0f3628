"""
Repository Acquisition

Gets a fresh working copy for a task (local-clone mode) or confirms the
remote repository is reachable (remote-API mode). Each local run wipes
`<repos_dir>/<name>` and clones again; concurrent tasks on the same
repository name share that directory.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from patchpilot.errors import AcquisitionError, GitOperationError
from patchpilot.workspace import WorkspaceError, redact, run_git

if TYPE_CHECKING:
    from patchpilot.github import GitHubClient

_GITHUB_URL = re.compile(r"github\.com[/:]([^/]+)/([^/?#]+)")


@dataclass
class RepoRef:
    url: str
    name: str
    owner: str | None = None


def parse_repo_url(url: str) -> RepoRef:
    """
    Split a repository URL into owner and name.

    GitHub URLs (https or ssh) yield both; anything else (another host, a
    local path) yields only the name, taken from the last path component.
    """
    url = url.strip()
    match = _GITHUB_URL.search(url)
    if match:
        owner, name = match.group(1), match.group(2)
    else:
        owner, name = None, url.rstrip("/").replace("\\", "/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[:-4]
    if not name:
        raise AcquisitionError(f"Cannot derive a repository name from {redact(url)!r}")
    return RepoRef(url=url, name=name, owner=owner)


class RepositoryAcquirer:
    def __init__(self, repos_dir: Path):
        self.repos_dir = repos_dir

    def target_dir(self, repo_url: str) -> Path:
        return (self.repos_dir / parse_repo_url(repo_url).name).resolve()

    def clone(self, repo_url: str) -> Path:
        """Wipe any previous copy and clone `repo_url`. Returns the working copy path."""
        target = self.target_dir(repo_url)
        if target.exists():
            logger.debug(f"[ACQUIRE] Removing previous copy at {target}")
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"[ACQUIRE] Cloning {redact(repo_url)} → {target}")
        try:
            run_git("clone", repo_url, str(target))
        except WorkspaceError as e:
            raise AcquisitionError(f"Clone failed for {redact(repo_url)}: {e}") from e

        if not (target / ".git").exists():
            raise AcquisitionError(f"Clone of {redact(repo_url)} produced no .git directory")
        return target

    @staticmethod
    def confirm_remote(client: "GitHubClient") -> dict:
        """Remote-API mode has no working copy; just check the repository answers."""
        try:
            repo = client.get_repo()
        except GitOperationError as e:
            raise AcquisitionError(f"Repository {client.full_name} is unreachable: {e}") from e
        logger.info(f"[ACQUIRE] Remote {client.full_name} reachable (default branch {repo.get('default_branch', '?')})")
        return repo
