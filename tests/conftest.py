import base64
import functools
import json
import subprocess
import threading
from pathlib import Path

import httpx
import pytest

from patchpilot.config_loader import load_config
from patchpilot.github import GitHubClient

APP_JS = """import React from 'react';
import './App.css';

function App() {
  return <div className="App">Hello</div>;
}

export default App;
"""


def git(*args, cwd):
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True)
    assert result.returncode == 0, result.stderr
    return result.stdout.strip()


def commit_all(cwd, message="init"):
    git("add", "-A", cwd=cwd)
    git("-c", "user.name=test", "-c", "user.email=test@example.com", "commit", "-m", message, cwd=cwd)


@pytest.fixture
def origin(tmp_path):
    """A bare repository on `main` holding a tiny React app; stands in for the remote."""
    seed = tmp_path / "seed"
    (seed / "src").mkdir(parents=True)
    (seed / "src" / "App.js").write_text(APP_JS)
    (seed / "README.md").write_text("# site\n")
    (seed / "node_modules" / "lib").mkdir(parents=True)
    (seed / "node_modules" / "lib" / "index.js").write_text("module.exports = 1;\n")
    (seed / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    git("init", cwd=seed)
    git("checkout", "-b", "main", cwd=seed)
    commit_all(seed)

    bare = tmp_path / "site.git"
    git("clone", "--bare", str(seed), str(bare), cwd=tmp_path)
    return bare


def remote_branches(bare: Path) -> list[str]:
    out = git("for-each-ref", "--format=%(refname:short)", "refs/heads", cwd=bare)
    return [line for line in out.splitlines() if line]


@pytest.fixture
def config(tmp_path):
    """Rules backend, local mode, clones under tmp_path."""
    cfg = load_config(env={})
    cfg.generation.backend = "rules"
    cfg.workflow.mode = "local"
    cfg.workspace.repos_dir = str(tmp_path / "repos")
    return cfg


class FakeGitHub:
    """In-memory stand-in for the GitHub git-data and pulls endpoints."""

    def __init__(self, files, owner="acme", repo="site", fail_on=None):
        self.prefix = f"/repos/{owner}/{repo}"
        self.files = dict(files)
        self.blobs = {f"blob-{path}": content for path, content in self.files.items()}
        self.refs = {"main": "base-commit"}
        self.fail_on = fail_on
        self.calls = []
        self.created_blobs = []
        self.created_trees = []
        self.created_commits = []
        self.created_refs = []
        self.pulls = []

    def client_factory(self):
        return functools.partial(GitHubClient, transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        if self.fail_on and method == self.fail_on[0] and path.endswith(self.fail_on[1]):
            return httpx.Response(500, json={"message": "boom"})
        if not path.startswith(self.prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        sub = path[len(self.prefix):]
        body = json.loads(request.content) if request.content else {}

        if method == "GET":
            if sub == "":
                return httpx.Response(200, json={"full_name": self.prefix[7:], "default_branch": "main"})
            if sub.startswith("/git/ref/heads/"):
                branch = sub[len("/git/ref/heads/"):]
                if branch not in self.refs:
                    return httpx.Response(404, json={"message": "Not Found"})
                return httpx.Response(200, json={"object": {"sha": self.refs[branch]}})
            if sub.startswith("/git/commits/"):
                sha = sub[len("/git/commits/"):]
                return httpx.Response(200, json={"sha": sha, "tree": {"sha": "base-tree"}})
            if sub.startswith("/git/trees/"):
                tree = [
                    {"path": p, "type": "blob", "sha": f"blob-{p}", "size": len(c)}
                    for p, c in self.files.items()
                ]
                tree.append({"path": "src", "type": "tree", "sha": "tree-src"})
                return httpx.Response(200, json={"tree": tree, "truncated": False})
            if sub.startswith("/git/blobs/"):
                content = self.blobs[sub[len("/git/blobs/"):]]
                raw = content if isinstance(content, bytes) else content.encode()
                encoded = base64.b64encode(raw).decode()
                return httpx.Response(200, json={"content": encoded, "encoding": "base64"})

        if method == "POST":
            if sub == "/git/blobs":
                sha = f"new-blob-{len(self.created_blobs)}"
                content = base64.b64decode(body["content"]).decode()
                self.blobs[sha] = content
                self.created_blobs.append(content)
                return httpx.Response(201, json={"sha": sha})
            if sub == "/git/trees":
                self.created_trees.append(body)
                return httpx.Response(201, json={"sha": "new-tree"})
            if sub == "/git/commits":
                self.created_commits.append(body)
                return httpx.Response(201, json={"sha": "new-commit"})
            if sub == "/git/refs":
                self.created_refs.append(body)
                self.refs[body["ref"][len("refs/heads/"):]] = body["sha"]
                return httpx.Response(201, json={"ref": body["ref"], "object": {"sha": body["sha"]}})
            if sub == "/pulls":
                self.pulls.append(body)
                return httpx.Response(201, json={"html_url": "https://github.com/acme/site/pull/7", "number": 7})

        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def fake_github():
    return FakeGitHub({"src/App.js": APP_JS, "README.md": "# site\n"})


README_DIFF = "--- a/README.md\n+++ b/README.md\n@@ -1 +1 @@\n-# site\n+# Site\n"


class GatedGenerator:
    """Returns README_DIFF, but blocks every generation until the test opens the gate."""

    def __init__(self):
        self.gate = threading.Event()

    def generate(self, request):
        assert self.gate.wait(timeout=30)
        return README_DIFF
