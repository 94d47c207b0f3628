"""
patchpilot Context Assembler

Walks a source tree (a local working copy or a remote git tree), reads
every text file that is not a dependency, build output or binary asset,
and concatenates them into the corpus the generation model sees.

The corpus is one block per file:

    --- src/App.js ---
    <content>

and the prompt is a fixed instruction preamble, the task description,
then the corpus.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from loguru import logger
from pydantic import BaseModel, Field

from patchpilot.config_loader import ContextConfig
from patchpilot.errors import ApplyConflict, GitOperationError, PipelineError

if TYPE_CHECKING:
    from patchpilot.github import GitHubClient
    from patchpilot.state import Task


PROMPT_PREAMBLE = """You are an expert software engineer editing an existing git repository.
Make exactly the change the user asks for and reply with a unified diff:
  - one `--- a/<path>` / `+++ b/<path>` header pair per file, paths relative to the repository root
  - `@@` hunks with 3 lines of unchanged context around every change
  - copy removed and context lines exactly as they appear, including indentation
  - use `--- /dev/null` for a new file
  - wrap the diff in a ```diff fenced block and add no explanation
If the change is a rewrite of a single file you may instead reply with JSON:
{"path": "<path>", "content": "<complete new file content>"}
If the request cannot be turned into a concrete file change, reply with exactly: NO_CHANGE
"""


class GenerationRequest(BaseModel):
    """Everything a change generator is handed for one task."""
    task_id: str
    description: str
    prompt: str
    files: dict[str, str] = Field(default_factory=dict)
    target_file: str | None = None
    # Reads files left out of `files` (skipped dirs, assets, oversized)
    read: Optional[Callable[[str], Optional[str]]] = Field(default=None, exclude=True, repr=False)

    def original(self, path: str) -> str | None:
        """Current content of `path`, or None when it does not exist or cannot be read."""
        if path in self.files:
            return self.files[path]
        if self.read is None:
            return None
        try:
            return self.read(path)
        except (OSError, UnicodeDecodeError, PipelineError) as e:
            logger.warning(f"[INDEX] Cannot read {path} outside the context: {e}")
            return None


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class SourceTree(Protocol):
    def list_files(self) -> list[tuple[str, int | None]]:
        """(relative path, size in bytes if known) for every file."""
        ...

    def read(self, path: str) -> str | None:
        """UTF-8 content, or None when the path does not exist."""
        ...


def is_skipped(path: str, skip_dirs: list[str], skip_extensions: list[str]) -> bool:
    parts = path.split("/")
    if any(part in skip_dirs for part in parts[:-1]):
        return True
    return any(parts[-1].endswith(ext) for ext in skip_extensions)


class LocalSource:
    """Filesystem walk of a working copy."""

    def __init__(self, root: Path):
        self.root = root.resolve()

    def list_files(self) -> list[tuple[str, int | None]]:
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d != ".git"]
            for name in filenames:
                full = Path(dirpath) / name
                rel = full.relative_to(self.root).as_posix()
                try:
                    size = full.stat().st_size
                except OSError:
                    size = None
                found.append((rel, size))
        return sorted(found)

    def read(self, path: str) -> str | None:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root) or not full.is_file():
            return None
        return full.read_text(encoding="utf-8")


class RemoteSource:
    """Recursive git tree listing plus blob contents over the REST API."""

    def __init__(self, client: "GitHubClient", ref: str):
        self.client = client
        self.ref = ref
        self._blobs: dict[str, tuple[str, int | None]] | None = None

    def _tree(self) -> dict[str, tuple[str, int | None]]:
        if self._blobs is None:
            self._blobs = {
                entry["path"]: (entry["sha"], entry.get("size"))
                for entry in self.client.get_tree(self.ref)
                if entry.get("type") == "blob"
            }
            logger.debug(f"[INDEX] {len(self._blobs)} blobs in {self.client.full_name}@{self.ref}")
        return self._blobs

    def list_files(self) -> list[tuple[str, int | None]]:
        return sorted((path, size) for path, (_, size) in self._tree().items())

    def read(self, path: str) -> str | None:
        entry = self._tree().get(path)
        if entry is None:
            return None
        try:
            return self.client.get_blob_text(entry[0])
        except UnicodeDecodeError:
            raise ApplyConflict(path, 0, "", reason="target is not a UTF-8 text file")


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def build_corpus(files: dict[str, str]) -> str:
    return "".join(f"--- {path} ---\n{content}\n" for path, content in files.items())


def build_prompt(description: str, corpus: str) -> str:
    return (
        f"{PROMPT_PREAMBLE}\n"
        f"The user wants to make the following change to the codebase: {description}\n\n"
        f"Here are the current files:\n\n{corpus}"
    )


class ContextAssembler:
    def __init__(self, config: ContextConfig | None = None):
        self.config = config or ContextConfig()

    def collect(self, source: SourceTree, only: list[str] | None = None) -> dict[str, str]:
        """Read every eligible file. Unreadable or oversized files are skipped with a warning."""
        files: dict[str, str] = {}
        wanted = set(only) if only is not None else None

        for path, size in source.list_files():
            if wanted is not None:
                if path not in wanted:
                    continue
            elif is_skipped(path, self.config.skip_dirs, self.config.skip_extensions):
                continue

            if size is not None and size > self.config.max_file_bytes:
                logger.warning(f"[INDEX] Skipping {path}: {size} bytes exceeds {self.config.max_file_bytes}")
                continue

            try:
                content = source.read(path)
            except (OSError, UnicodeDecodeError, ApplyConflict, GitOperationError) as e:
                logger.warning(f"[INDEX] Skipping unreadable {path}: {e}")
                continue
            if content is not None:
                files[path] = content

        logger.info(f"[INDEX] {len(files)} files in context")
        return files

    def assemble(self, task: "Task", source: SourceTree) -> GenerationRequest:
        only = [task.target_file] if task.target_file else None
        files = self.collect(source, only=only)
        if task.target_file and task.target_file not in files:
            logger.warning(f"[INDEX] Target file {task.target_file} not found; it will be created")

        return GenerationRequest(
            task_id=task.task_id,
            description=task.description,
            prompt=build_prompt(task.description, build_corpus(files)),
            files=files,
            target_file=task.target_file,
            read=source.read,
        )
