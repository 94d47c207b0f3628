from unittest.mock import patch

import pytest

from patchpilot.config_loader import load_config, validate_generation_credentials
from patchpilot.errors import ConfigError


def test_defaults():
    config = load_config(env={})
    assert config.generation.backend == "llm"
    assert config.generation.model == "gemini/gemini-2.5-pro"
    assert config.workflow.mode == "local"
    assert config.workflow.base_branch == "main"
    assert config.workflow.branch_prefix == "ai-changes"
    assert config.apply.mode == "per_file"
    assert config.apply.matcher == "content"
    assert "node_modules" in config.context.skip_dirs
    assert ".png" in config.context.skip_extensions
    assert config.github.token is None


def test_repo_overrides_merge_with_defaults(tmp_path):
    (tmp_path / ".patchpilot").mkdir()
    (tmp_path / ".patchpilot" / "config.yaml").write_text(
        "workflow:\n  base_branch: develop\napply:\n  matcher: offset\n"
    )
    config = load_config(tmp_path, env={})
    assert config.workflow.base_branch == "develop"
    assert config.workflow.branch_prefix == "ai-changes"
    assert config.apply.matcher == "offset"


def test_env_overrides_win(tmp_path):
    env = {
        "GITHUB_TOKEN": "ghp_x",
        "GITHUB_OWNER": "acme",
        "GITHUB_REPO": "site",
        "PATCHPILOT_MODE": "remote",
        "PATCHPILOT_MODEL": "openai/gpt-4o",
    }
    config = load_config(tmp_path, env=env)
    assert config.github.token == "ghp_x"
    assert config.github.owner == "acme"
    assert config.github.repo == "site"
    assert config.workflow.mode == "remote"
    assert config.generation.model == "openai/gpt-4o"


def test_rules_backend_needs_no_credentials():
    config = load_config(env={"PATCHPILOT_BACKEND": "rules"})
    with patch("patchpilot.config_loader.litellm.validate_environment") as validate:
        validate_generation_credentials(config)
    validate.assert_not_called()


def test_missing_model_credentials_is_fatal():
    config = load_config(env={})
    missing = {"keys_in_environment": False, "missing_keys": ["GEMINI_API_KEY"]}
    with patch("patchpilot.config_loader.litellm.validate_environment", return_value=missing):
        with pytest.raises(ConfigError, match="GEMINI_API_KEY"):
            validate_generation_credentials(config)


def test_present_model_credentials_pass():
    config = load_config(env={})
    ok = {"keys_in_environment": True, "missing_keys": []}
    with patch("patchpilot.config_loader.litellm.validate_environment", return_value=ok):
        validate_generation_credentials(config)
