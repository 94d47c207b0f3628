"""
patchpilot Change Generators

Each generator turns a GenerationRequest into unified diff text:
  - DiffAgent (implementer.py): asks the configured model
  - TemplateAgent (templater.py): pattern rules, no model

Generators are stateless between runs and safe to share across threads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from patchpilot.config_loader import PatchPilotConfig
from patchpilot.indexer import GenerationRequest
from patchpilot.router import Router, RouterResponse


class ChangeGenerator(Protocol):
    def generate(self, request: GenerationRequest) -> str:
        """Return diff text, or raise GenerationFailed / UnparseableInstruction."""
        ...


class BaseAgent(ABC):
    """
    Base class for model-backed generators.

    Subclasses define:
      - role: str — used in log tags
      - system_prompt: str
      - build_messages() — constructs the chat messages
      - parse_response() — turns the reply into diff text
    """

    role: str = "unknown"
    system_prompt: str = "You are a helpful assistant."

    def __init__(self, router: Router):
        self.router = router

    def generate(self, request: GenerationRequest) -> str:
        """Build messages → call model → parse."""
        messages = self.build_messages(request)
        response = self.router.complete(messages)
        return self.parse_response(response, request)

    @abstractmethod
    def build_messages(self, request: GenerationRequest) -> list[dict[str, str]]:
        ...

    @abstractmethod
    def parse_response(self, response: RouterResponse, request: GenerationRequest) -> str:
        ...

    def _system_msg(self) -> dict[str, str]:
        return {"role": "system", "content": self.system_prompt}

    def _user_msg(self, content: str) -> dict[str, str]:
        return {"role": "user", "content": content}


def build_generator(config: PatchPilotConfig) -> ChangeGenerator:
    """Pick the backend named by `generation.backend`."""
    if config.generation.backend == "rules":
        from patchpilot.agents.templater import TemplateAgent
        return TemplateAgent()

    from patchpilot.agents.implementer import DiffAgent
    return DiffAgent(Router(config.generation))
