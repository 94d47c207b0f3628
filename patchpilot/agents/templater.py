"""
Rule-based change generator.

Maps a handful of recognizable task phrasings to concrete edits without
calling a model:

  - "add `Button` import in `src/App.js`" (optionally "from `module`")
  - "add a Navbar component" / "create Footer component"

Anything else is an UnparseableInstruction.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from loguru import logger

from patchpilot.agents.implementer import replacement_diff
from patchpilot.errors import UnparseableInstruction
from patchpilot.indexer import GenerationRequest

IMPORT_RULE = re.compile(
    r"add\s+(?:an?\s+)?`?(?P<name>[A-Za-z_$][\w$]*)`?\s+import"
    r"(?:\s+from\s+`?(?P<module>[^`\s]+?)`?)?"
    r"\s+(?:in|to|into)\s+`?(?P<path>[\w./-]+?)`?(?=[\s.,;]*$|\s)",
    re.IGNORECASE,
)
COMPONENT_RULE = re.compile(r"(?:add|create)\s+(?:a\s+|an\s+|new\s+)*`?(\w+)`?\s+component", re.IGNORECASE)

_JS_IMPORT_LINE = re.compile(r"^\s*(?:import\s|export\s.*\sfrom\s|(?:const|let|var)\s+.*=\s*require\()")
_PY_IMPORT_LINE = re.compile(r"^(?:import|from)\s")


def import_statement(name: str, path: str, module: str | None) -> str:
    if PurePosixPath(path).suffix == ".py":
        return f"from {module} import {name}" if module else f"import {name}"
    return f"import {name} from '{module or './' + name}';"


def insert_import(content: str, statement: str, path: str) -> str:
    """Insert after the last top-level import line, or at the very top."""
    newline = "\r\n" if "\r\n" in content else "\n"
    lines = content.split(newline) if content else []
    if statement in (line.strip() for line in lines):
        return content

    pattern = _PY_IMPORT_LINE if PurePosixPath(path).suffix == ".py" else _JS_IMPORT_LINE
    last_import = -1
    for idx, line in enumerate(lines):
        if pattern.match(line):
            last_import = idx

    lines.insert(last_import + 1, statement)
    updated = newline.join(lines)
    if not content:
        updated += newline
    return updated


def react_component(name: str, description: str) -> str:
    return f"""import React from 'react';

const {name} = () => {{
  return (
    <div className="{name.lower()}">
      <h2>{name}</h2>
      <p>Component created from task: {description}</p>
    </div>
  );
}};

export default {name};
"""


class TemplateAgent:
    role = "templater"

    def generate(self, request: GenerationRequest) -> str:
        description = request.description.strip()

        match = IMPORT_RULE.search(description)
        if match:
            path = request.target_file or match.group("path")
            name = match.group("name")
            original = request.original(path)
            statement = import_statement(name, path, match.group("module"))
            logger.info(f"[GENERATE] {request.task_id}: import rule → {statement!r} in {path}")
            return replacement_diff(path, insert_import(original or "", statement, path), original)

        match = COMPONENT_RULE.search(description)
        if match:
            raw = match.group(1)
            name = raw[0].upper() + raw[1:]
            path = f"src/components/{name}.js"
            logger.info(f"[GENERATE] {request.task_id}: component rule → {path}")
            existing = request.original(path)
            if existing is not None:
                return replacement_diff(path, existing, existing)
            return replacement_diff(path, react_component(name, description), None)

        raise UnparseableInstruction(f"No change rule matches task description: {description[:120]!r}")
