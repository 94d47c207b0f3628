"""
GitHub REST client for the remote-API workflow.

Covers exactly the git-data and pull-request endpoints the pipeline
drives: refs, commits, trees, blobs and pulls. Every HTTP or transport
failure surfaces as GitOperationError.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

import httpx
from loguru import logger

from patchpilot.errors import GitOperationError

FILE_MODE = "100644"


class GitHubClient:
    """Synchronous client bound to one `owner/repo`."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None = None,
        api_url: str = "https://api.github.com",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "patchpilot",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=None,
            transport=transport,
        )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- transport ----------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"/repos/{self.owner}/{self.repo}{path}"
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GitOperationError(f"GitHub {method} {path} failed: {e}") from e

        if resp.is_error:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise GitOperationError(f"GitHub {method} {path} failed: {resp.status_code} {detail}")

        logger.debug(f"[GITHUB] {method} {path} → {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise GitOperationError(f"GitHub {method} {path} returned a non-JSON body") from e

    def _field(self, data: Any, *keys: str) -> Any:
        """`data[k1][k2]...`, or GitOperationError when the response lacks it."""
        try:
            for key in keys:
                data = data[key]
        except (KeyError, TypeError, IndexError) as e:
            raise GitOperationError(f"GitHub response is missing {'.'.join(keys)}") from e
        return data

    # -- reads --------------------------------------------------------------

    def get_repo(self) -> dict[str, Any]:
        return self._request("GET", "")

    def get_branch_sha(self, branch: str) -> str:
        return self._field(self._request("GET", f"/git/ref/heads/{branch}"), "object", "sha")

    def get_commit(self, sha: str) -> dict[str, Any]:
        return self._request("GET", f"/git/commits/{sha}")

    def get_commit_tree(self, sha: str) -> str:
        return self._field(self.get_commit(sha), "tree", "sha")

    def get_tree(self, tree_ish: str, recursive: bool = True) -> list[dict[str, Any]]:
        """Tree entries for a tree SHA or branch name."""
        params = {"recursive": "1"} if recursive else None
        data = self._request("GET", f"/git/trees/{tree_ish}", params=params)
        if data.get("truncated"):
            logger.warning(f"[GITHUB] Tree listing for {self.full_name}@{tree_ish} was truncated")
        return data.get("tree", [])

    def get_blob_text(self, sha: str) -> str:
        data = self._request("GET", f"/git/blobs/{sha}")
        if data.get("encoding") == "base64":
            try:
                raw = base64.b64decode(self._field(data, "content"))
            except binascii.Error as e:
                raise GitOperationError(f"Blob {sha} is not valid base64") from e
            return raw.decode("utf-8")
        return data.get("content", "")

    # -- writes -------------------------------------------------------------

    def create_blob(self, content: str) -> str:
        payload = {
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "encoding": "base64",
        }
        return self._field(self._request("POST", "/git/blobs", json=payload), "sha")

    def create_tree(self, base_tree: str, entries: list[dict[str, Any]]) -> str:
        data = self._request("POST", "/git/trees", json={"base_tree": base_tree, "tree": entries})
        return self._field(data, "sha")

    def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        payload = {"message": message, "tree": tree, "parents": parents}
        return self._field(self._request("POST", "/git/commits", json=payload), "sha")

    def create_ref(self, branch: str, sha: str) -> dict[str, Any]:
        return self._request("POST", "/git/refs", json={"ref": f"refs/heads/{branch}", "sha": sha})

    def create_pull(self, title: str, body: str, head: str, base: str) -> dict[str, Any]:
        payload = {"title": title, "body": body, "head": head, "base": base}
        return self._request("POST", "/pulls", json=payload)


def tree_entry(path: str, blob_sha: str | None) -> dict[str, Any]:
    """A tree entry; a None SHA deletes the path from the base tree."""
    return {"path": path, "mode": FILE_MODE, "type": "blob", "sha": blob_sha}
