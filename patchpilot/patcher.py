"""
Patch Applier

Applies parsed FileHunks to file content in memory. Where the line goes
is decided by a pluggable matcher:

  - ContentScanMatcher: find each removed line by its text, scanning
    forward from a cursor. Survives upstream line drift, but takes the
    first eligible occurrence when the same text repeats.
  - LineOffsetMatcher: trust the @@ header line numbers and demand an
    exact match there.

One applier serves both whole-repository and single-file runs; the
difference is the ApplyMode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol

from loguru import logger

from patchpilot.diffparse import FileHunk, Patch
from patchpilot.errors import ApplyConflict


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------

class LineMatcher(Protocol):
    name: str

    def rewrite(self, path: str, lines: list[str], file_hunk: FileHunk) -> list[str]:
        """Return the new line list or raise ApplyConflict."""
        ...


def _find(lines: list[str], text: str, start: int) -> int | None:
    for idx in range(start, len(lines)):
        if lines[idx] == text:
            return idx
    return None


class ContentScanMatcher:
    """Locate lines by exact text from the scan cursor; ignore declared numbers."""

    name = "content"

    def rewrite(self, path: str, lines: list[str], file_hunk: FileHunk) -> list[str]:
        if not file_hunk.removed_lines and not self._any_context_present(lines, file_hunk):
            # Pure addition with nothing to hang it on: append
            return lines + file_hunk.added_lines

        out: list[str] = []
        cursor = 0
        for seg in file_hunk.segments:
            # Context is a soft anchor: it moves the cursor when found
            for ctx in seg.context:
                idx = _find(lines, ctx, cursor)
                if idx is None:
                    continue
                out.extend(lines[cursor:idx + 1])
                cursor = idx + 1

            for removed in seg.removed:
                idx = _find(lines, removed, cursor)
                if idx is None:
                    raise ApplyConflict(path, seg.hunk_index, removed)
                out.extend(lines[cursor:idx])
                cursor = idx + 1

            out.extend(seg.added)

        out.extend(lines[cursor:])
        return out

    @staticmethod
    def _any_context_present(lines: list[str], file_hunk: FileHunk) -> bool:
        present = set(lines)
        return any(ctx in present for seg in file_hunk.segments for ctx in seg.context)


class LineOffsetMatcher:
    """Apply at the declared @@ positions. Every context/removed line must match there."""

    name = "offset"

    def rewrite(self, path: str, lines: list[str], file_hunk: FileHunk) -> list[str]:
        out: list[str] = []
        cursor = 0
        for seg in file_hunk.segments:
            pos = seg.old_start - 1
            if pos < cursor or pos > len(lines):
                first = (seg.context or seg.removed or seg.added or [""])[0]
                raise ApplyConflict(
                    path, seg.hunk_index, first,
                    reason=f"declared line {seg.old_start} is out of range",
                )
            out.extend(lines[cursor:pos])
            cursor = pos

            for expected, keep in [(c, True) for c in seg.context] + [(r, False) for r in seg.removed]:
                if cursor >= len(lines) or lines[cursor] != expected:
                    raise ApplyConflict(
                        path, seg.hunk_index, expected,
                        reason=f"line {cursor + 1} does not match",
                    )
                if keep:
                    out.append(lines[cursor])
                cursor += 1

            out.extend(seg.added)

        out.extend(lines[cursor:])
        return out


MATCHERS: dict[str, Callable[[], LineMatcher]] = {
    ContentScanMatcher.name: ContentScanMatcher,
    LineOffsetMatcher.name: LineOffsetMatcher,
}


def get_matcher(name: str) -> LineMatcher:
    try:
        return MATCHERS[name]()
    except KeyError:
        raise ValueError(f"Unknown matcher: {name}. Known: {list(MATCHERS)}")


# ---------------------------------------------------------------------------
# Single-file application
# ---------------------------------------------------------------------------

def _split(text: str) -> tuple[list[str], str, bool]:
    newline = "\r\n" if "\r\n" in text else "\n"
    if not text:
        return [], newline, False
    ends_with_newline = text.endswith(newline)
    body = text[: -len(newline)] if ends_with_newline else text
    return body.split(newline), newline, ends_with_newline


def apply_hunk(
    original: str,
    file_hunk: FileHunk,
    matcher: LineMatcher | None = None,
) -> str:
    """
    Apply one FileHunk to `original` and return the updated text.

    An absent target is passed in as "" and yields just the added lines.
    Raises ApplyConflict; `original` itself is never mutated.
    """
    if file_hunk.is_deletion:
        return ""

    matcher = matcher or ContentScanMatcher()
    lines, newline, ends_with_newline = _split(original)
    new_lines = matcher.rewrite(file_hunk.path, lines, file_hunk)

    if file_hunk.newline_at_eof is not None:
        trailing = file_hunk.newline_at_eof
    else:
        trailing = ends_with_newline or not original

    if not new_lines:
        return ""
    return newline.join(new_lines) + (newline if trailing else "")


# ---------------------------------------------------------------------------
# Multi-file application
# ---------------------------------------------------------------------------

class ApplyMode(str, Enum):
    PER_FILE = "per_file"  # isolate conflicts to the file, keep going
    ATOMIC = "atomic"      # first conflict aborts the task, nothing written


@dataclass
class ApplyReport:
    # path -> new content, None for a deletion
    changed: dict[str, str | None] = field(default_factory=dict)
    conflicts: list[ApplyConflict] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    # changed paths that did not exist before
    created: list[str] = field(default_factory=list)

    @property
    def files_changed(self) -> list[str]:
        return list(self.changed)

    def summary(self) -> dict:
        return {
            "files_changed": self.files_changed,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "unchanged": self.unchanged,
        }


class PatchApplier:
    """Applies a whole Patch with one conflict policy."""

    def __init__(self, mode: ApplyMode | str = ApplyMode.PER_FILE, matcher: LineMatcher | None = None):
        self.mode = ApplyMode(mode)
        self.matcher = matcher or ContentScanMatcher()

    def plan(self, patch: Patch, read: Callable[[str], str | None]) -> ApplyReport:
        """Compute the new content of every touched file without writing anything."""
        report = ApplyReport()

        for file_hunk in patch:
            path = file_hunk.path
            try:
                if not path or path == "/dev/null":
                    raise ApplyConflict(path or "?", 0, "", reason="unresolvable path")

                if not file_hunk.has_changes:
                    report.unchanged.append(path)
                    continue

                original = read(path)
                if file_hunk.is_deletion:
                    if original is None:
                        report.unchanged.append(path)
                    else:
                        report.changed[path] = None
                    continue

                if file_hunk.is_new_file and original is not None:
                    # A "new file" diff for a path that exists replaces it outright
                    logger.warning(f"[APPLY] {path} already exists; replacing it with the new-file content")
                    updated = apply_hunk("", file_hunk, self.matcher)
                else:
                    updated = apply_hunk(original or "", file_hunk, self.matcher)
            except ApplyConflict as e:
                if self.mode == ApplyMode.ATOMIC:
                    logger.error(f"[APPLY] {e} — aborting (atomic mode)")
                    raise
                logger.warning(f"[APPLY] {e} — file left untouched")
                report.conflicts.append(e)
                continue

            if original is not None and updated == original:
                report.unchanged.append(path)
                continue
            report.changed[path] = updated
            if original is None:
                report.created.append(path)

        if report.conflicts and not report.changed:
            raise report.conflicts[0]

        logger.info(
            f"[APPLY] {len(report.changed)} changed, "
            f"{len(report.conflicts)} conflicted, "
            f"{len(report.unchanged)} unchanged ({self.matcher.name} matcher, {self.mode.value})"
        )
        return report

    def apply_to_files(self, files: dict[str, str], patch: Patch) -> ApplyReport:
        """In-memory application for runs with no working copy."""
        return self.plan(patch, files.get)

    def apply_to_tree(self, root: Path, patch: Patch) -> ApplyReport:
        """Apply to a working copy on disk. Conflicting files are not touched."""
        root = root.resolve()

        def read(path: str) -> str | None:
            target = _resolve_inside(root, path)
            if not target.is_file():
                return None
            try:
                return target.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                raise ApplyConflict(path, 0, "", reason="target is not a UTF-8 text file")

        report = self.plan(patch, read)

        for path, content in report.changed.items():
            target = _resolve_inside(root, path)
            if content is None:
                target.unlink(missing_ok=True)
                logger.debug(f"[APPLY] DELETE {path}")
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            logger.debug(f"[APPLY] WRITE {path}")

        return report


def _resolve_inside(root: Path, path: str) -> Path:
    target = (root / path).resolve()
    if not target.is_relative_to(root):
        raise ApplyConflict(path, 0, "", reason="path escapes the working copy")
    return target
