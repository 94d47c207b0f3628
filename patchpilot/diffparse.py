"""
Unified diff reading and writing.

The parser is deliberately forgiving about everything around the diff
(prose, markdown fences, `diff --git` / `index` lines) and about hunk
line counts, which models routinely get wrong. Files are split on
`---`/`+++` header pairs only.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from patchpilot.errors import ParseError

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
NO_NEWLINE_MARKER = "\\ No newline at end of file"
DEV_NULL = "/dev/null"


# ---------------------------------------------------------------------------
# Data Models
# ---------------------------------------------------------------------------

@dataclass
class Segment:
    """One change inside a hunk: the context leading up to it, then -/+ lines."""
    hunk_index: int
    old_start: int  # 1-based line in the old file where `context` (or `removed`) begins
    context: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)

    @property
    def is_change(self) -> bool:
        return bool(self.removed or self.added)


@dataclass
class FileHunk:
    path: str
    segments: List[Segment] = field(default_factory=list)
    is_new_file: bool = False
    is_deletion: bool = False
    # None = keep whatever the original did
    newline_at_eof: Optional[bool] = None

    @property
    def removed_lines(self) -> List[str]:
        return [line for seg in self.segments for line in seg.removed]

    @property
    def added_lines(self) -> List[str]:
        return [line for seg in self.segments for line in seg.added]

    @property
    def has_changes(self) -> bool:
        return self.is_deletion or any(seg.is_change for seg in self.segments)


Patch = List[FileHunk]


# ---------------------------------------------------------------------------
# Path handling
# ---------------------------------------------------------------------------

def normalize_path(raw: str) -> str:
    """Strip header noise: timestamps, quotes, a/ b/ prefixes, backslashes."""
    path = raw.split("\t", 1)[0].strip()
    if len(path) >= 2 and path[0] == path[-1] == '"':
        path = path[1:-1]
    path = path.replace("\\", "/")
    if path == DEV_NULL:
        return path
    if path.startswith(("a/", "b/")):
        path = path[2:]
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def _is_header_pair(lines: List[str], i: int) -> bool:
    return (
        lines[i].startswith("--- ")
        and i + 1 < len(lines)
        and lines[i + 1].startswith("+++ ")
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _HunkBuilder:
    """Folds the lines of one @@ block into segments."""

    def __init__(self, hunk_index: int, old_start: int):
        self.hunk_index = hunk_index
        self.old_line = old_start
        self.segments: List[Segment] = []
        self._current = Segment(hunk_index=hunk_index, old_start=old_start)
        self.last_kind = ""

    def context(self, text: str) -> None:
        if self._current.is_change:
            self._flush()
        if not self._current.context and not self._current.removed:
            self._current.old_start = self.old_line
        self._current.context.append(text)
        self.old_line += 1
        self.last_kind = " "

    def removed(self, text: str) -> None:
        if self._current.added:
            # "-" after "+" starts a new change
            self._flush()
        if not self._current.context and not self._current.removed:
            self._current.old_start = self.old_line
        self._current.removed.append(text)
        self.old_line += 1
        self.last_kind = "-"

    def added(self, text: str) -> None:
        if not self._current.context and not self._current.removed and not self._current.added:
            self._current.old_start = self.old_line
        self._current.added.append(text)
        self.last_kind = "+"

    def _flush(self) -> None:
        self.segments.append(self._current)
        self._current = Segment(hunk_index=self.hunk_index, old_start=self.old_line)

    def finish(self) -> List[Segment]:
        # Trailing blank context is usually an artefact of how the diff was pasted
        while self._current.context and not self._current.is_change and self._current.context[-1] == "":
            self._current.context.pop()
        if self._current.context or self._current.is_change:
            self.segments.append(self._current)
        return self.segments


def parse_diff(text: str) -> Patch:
    """
    Parse unified diff text into one FileHunk per distinct path.

    Raises ParseError when no `--- ` / `+++ ` header pair exists.
    """
    lines = text.replace("\r\n", "\n").split("\n")
    by_path: dict[str, FileHunk] = {}
    order: List[str] = []

    current: FileHunk | None = None
    builder: _HunkBuilder | None = None
    hunk_count = 0

    def close_hunk() -> None:
        nonlocal builder
        if current is not None and builder is not None:
            current.segments.extend(builder.finish())
        builder = None

    i = 0
    while i < len(lines):
        line = lines[i]

        if _is_header_pair(lines, i):
            close_hunk()
            old_path = normalize_path(line[4:])
            new_path = normalize_path(lines[i + 1][4:])
            is_new = old_path == DEV_NULL
            is_deleted = new_path == DEV_NULL
            path = old_path if is_deleted else new_path

            if path in by_path:
                current = by_path[path]
            else:
                current = FileHunk(path=path, is_new_file=is_new, is_deletion=is_deleted)
                by_path[path] = current
                order.append(path)
            hunk_count = len({seg.hunk_index for seg in current.segments})
            i += 2
            continue

        if current is None:
            i += 1
            continue

        if line.startswith("@@"):
            close_hunk()
            header = HUNK_HEADER.match(line)
            if header:
                old_start = int(header.group(1))
                # "-N,0" means "insert after line N"
                old_start = old_start + 1 if header.group(2) == "0" else max(old_start, 1)
            else:
                # Bare "@@" marker; only the offset matcher reads the number
                old_start = 1
            builder = _HunkBuilder(hunk_index=hunk_count, old_start=old_start)
            hunk_count += 1
            i += 1
            continue

        if builder is None:
            # diff --git / index / mode lines between header and first hunk
            i += 1
            continue

        if line.startswith("diff ") or line.startswith("```"):
            close_hunk()
        elif line.startswith("+"):
            builder.added(line[1:])
        elif line.startswith("-"):
            builder.removed(line[1:])
        elif line.startswith(" "):
            builder.context(line[1:])
        elif line == "":
            builder.context("")
        elif line.startswith(NO_NEWLINE_MARKER[:2]):
            if builder.last_kind in ("+", " "):
                current.newline_at_eof = False
            elif builder.last_kind == "-" and current.newline_at_eof is None:
                current.newline_at_eof = True
        else:
            # Prose after the diff ends the hunk
            close_hunk()
        i += 1

    close_hunk()

    if not order:
        raise ParseError("No unified diff header (--- a/... / +++ b/...) found in generated text")

    patch = [by_path[p] for p in order]
    logger.debug(
        f"[PARSE] {len(patch)} file(s): "
        + ", ".join(f"{fh.path} (+{len(fh.added_lines)}/-{len(fh.removed_lines)})" for fh in patch)
    )
    return patch


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

def create_patch(path: str, original: str, updated: str, context: int = 3) -> str:
    """
    Generate a unified diff turning `original` into `updated`.

    Empty string if nothing changed. An empty `original` is written as a
    new file (`--- /dev/null`). A final line without a newline gets the
    usual `\\ No newline at end of file` marker.
    """
    if original == updated:
        return ""

    fromfile = DEV_NULL if original == "" else f"a/{path}"
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        updated.splitlines(keepends=True),
        fromfile=fromfile,
        tofile=f"b/{path}",
        lineterm="",
        n=context,
    )

    out: List[str] = []
    for index, line in enumerate(diff):
        if index < 2 or line.startswith("@@"):
            out.append(line.rstrip("\n"))
        elif line.endswith("\n"):
            out.append(line[:-1])
        else:
            out.append(line)
            out.append(NO_NEWLINE_MARKER)

    return "\n".join(out) + "\n"
