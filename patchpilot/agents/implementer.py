"""
🔧 Patch — The Implementer

Single-shot diff generation: the assembled prompt goes to the model and
the reply is normalized into unified diff text. Models answer in a few
shapes, all accepted:

  - a ```diff fenced block, or a bare diff among prose
  - JSON {"path": ..., "content": ...} with the full new file
  - a `File: <path>` line followed by a fenced block with the full new file

Full-file replies are turned into a diff against the file's current
content, read from the source tree when it was left out of the context.
"""

from __future__ import annotations

import json
import re
from typing import Callable, Optional

from loguru import logger

from patchpilot.agents import BaseAgent
from patchpilot.diffparse import create_patch, normalize_path
from patchpilot.errors import UnparseableInstruction
from patchpilot.indexer import GenerationRequest
from patchpilot.router import RouterResponse

NO_CHANGE = "NO_CHANGE"

_FENCE = re.compile(r"```([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)
_FILE_LINE = re.compile(
    r"^\s*(?:\*\*)?(?:File|Path)\s*:\s*(?:\*\*)?\s*`?([^`\s*]+)`?(?:\*\*)?\s*$",
    re.IGNORECASE | re.MULTILINE,
)


def _looks_like_diff(text: str) -> bool:
    """True when a `--- ` line is directly followed by a `+++ ` line."""
    lines = text.split("\n")
    return any(
        lines[i].startswith("--- ") and lines[i + 1].startswith("+++ ")
        for i in range(len(lines) - 1)
    )


def _json_replacement(text: str, blocks: list[tuple[str, str]]) -> tuple[str, str] | None:
    candidates = [text] + [body for lang, body in blocks if lang.lower() in ("json", "")]
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        path = data.get("path") or data.get("file")
        content = data.get("content")
        if isinstance(path, str) and isinstance(content, str):
            return path, content
    return None


def _file_block_replacement(text: str) -> tuple[str, str] | None:
    match = _FILE_LINE.search(text)
    if not match:
        return None
    fence = _FENCE.search(text, match.end())
    if not fence:
        return None
    return match.group(1), fence.group(2)


def replacement_diff(path: str, content: str, original: str | None) -> str:
    """Diff from `original` (None for a file that does not exist) to `content`."""
    path = normalize_path(path)
    diff = create_patch(path, original or "", content)
    if not diff:
        # Header only: parses to an empty-change hunk, i.e. "no changes"
        return f"--- a/{path}\n+++ b/{path}\n"
    return diff


def normalize_reply(reply: str, original: Callable[[str], Optional[str]]) -> str:
    """
    Turn a model reply into diff text.

    Raises UnparseableInstruction when the reply holds neither a diff nor
    a path with replacement content.
    """
    text = reply.strip()
    if not text or text == NO_CHANGE:
        raise UnparseableInstruction("Model could not map the task to a concrete change")

    blocks = _FENCE.findall(text)
    diff_blocks = [
        body for lang, body in blocks
        if lang.lower() in ("diff", "patch") or _looks_like_diff(body)
    ]
    if diff_blocks:
        return "\n".join(diff_blocks)

    if _looks_like_diff(text):
        return text

    replacement = _json_replacement(text, blocks) or _file_block_replacement(text)
    if replacement:
        path, content = replacement
        logger.debug(f"[GENERATE] Full-file reply for {path}; converting to diff")
        path = normalize_path(path)
        return replacement_diff(path, content, original(path))

    raise UnparseableInstruction("Generated reply contains neither a diff nor a file replacement")


class DiffAgent(BaseAgent):
    role = "implementer"

    system_prompt = """You are Patch, a surgical code editor.
You receive a change request and the current repository files.
You answer with a minimal unified diff and nothing else."""

    def build_messages(self, request: GenerationRequest) -> list[dict[str, str]]:
        return [self._system_msg(), self._user_msg(request.prompt)]

    def parse_response(self, response: RouterResponse, request: GenerationRequest) -> str:
        logger.info(
            f"[GENERATE] {request.task_id}: {response.model} replied "
            f"({response.tokens_used} tokens, ${response.cost:.4f}, {response.latency_ms}ms)"
        )
        return normalize_reply(response.content, request.original)
