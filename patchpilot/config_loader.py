"""
Configuration loader for patchpilot.
Merges defaults with per-repo .patchpilot/config.yaml overrides
and a small set of environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import litellm
import yaml
from pydantic import BaseModel, Field

from patchpilot.errors import ConfigError


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class GenerationConfig(BaseModel):
    backend: Literal["llm", "rules"] = "llm"
    model: str = "gemini/gemini-2.5-pro"
    temperature: float = 0.2
    max_tokens: int = 8192


class WorkflowConfig(BaseModel):
    mode: Literal["local", "remote"] = "local"
    base_branch: str = "main"
    branch_prefix: str = "ai-changes"
    pr_title_prefix: str = ""
    author_name: str = "patchpilot"
    author_email: str = "patchpilot@users.noreply.github.com"


class GitHubConfig(BaseModel):
    token: str | None = None
    owner: str | None = None
    repo: str | None = None
    api_url: str = "https://api.github.com"


class WorkspaceConfig(BaseModel):
    repos_dir: str = ".patchpilot/repos"


class ContextConfig(BaseModel):
    max_file_bytes: int = 200_000
    skip_dirs: list[str] = Field(default_factory=lambda: [".git", "node_modules"])
    skip_extensions: list[str] = Field(default_factory=list)


class ApplyConfig(BaseModel):
    mode: Literal["per_file", "atomic"] = "per_file"
    matcher: Literal["content", "offset"] = "content"


class QueueConfig(BaseModel):
    max_workers: int = 4


class PatchPilotConfig(BaseModel):
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

# env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "GITHUB_TOKEN": ("github", "token"),
    "GITHUB_OWNER": ("github", "owner"),
    "GITHUB_REPO": ("github", "repo"),
    "PATCHPILOT_MODEL": ("generation", "model"),
    "PATCHPILOT_BACKEND": ("generation", "backend"),
    "PATCHPILOT_MODE": ("workflow", "mode"),
    "PATCHPILOT_BASE_BRANCH": ("workflow", "base_branch"),
    "PATCHPILOT_REPOS_DIR": ("workspace", "repos_dir"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    repo_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> PatchPilotConfig:
    """
    Load config by merging:
      1. Built-in defaults (patchpilot/config.yaml)
      2. Repo-level overrides (<repo>/.patchpilot/config.yaml)
      3. Environment variable overrides (ENV_OVERRIDES)
    """
    env = os.environ if env is None else env

    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r", encoding="utf-8") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Repo overrides
    if repo_path:
        repo_config = repo_path / ".patchpilot" / "config.yaml"
        if repo_config.exists():
            with open(repo_config, "r", encoding="utf-8") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    # 3. Env overrides
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            base = _deep_merge(base, {section: {key: value}})

    return PatchPilotConfig(**base)


def credential_report(config: PatchPilotConfig) -> dict[str, bool]:
    """Check which credentials the configured stack can see."""
    report = {"GITHUB_TOKEN": bool(config.github.token)}
    if config.generation.backend == "rules":
        return report

    env = litellm.validate_environment(model=config.generation.model)
    missing = env.get("missing_keys") or []
    for key in missing:
        report[key] = False
    if env.get("keys_in_environment"):
        report[f"{config.generation.model} credentials"] = True
    return report


def validate_generation_credentials(config: PatchPilotConfig) -> None:
    """
    Fail fast when the generation service cannot be reached.
    The rule-based backend has no upstream and needs nothing.
    """
    if config.generation.backend == "rules":
        return

    env = litellm.validate_environment(model=config.generation.model)
    if not env.get("keys_in_environment"):
        missing = ", ".join(env.get("missing_keys") or []) or "unknown"
        raise ConfigError(
            f"No credentials for generation model {config.generation.model} "
            f"(missing: {missing})"
        )
