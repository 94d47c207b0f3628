"""
patchpilot Router — Vendor-Agnostic Model Abstraction

Routes generation calls through LiteLLM so the agents never know which
vendor is backing them. One attempt per call: no retries and no
client-side timeout.
"""

from __future__ import annotations

import time
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel

from patchpilot.config_loader import GenerationConfig
from patchpilot.errors import GenerationFailed


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_gpt5_model(model: str) -> bool:
    """GPT-5 family models have restricted parameter support."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("gpt-5")


def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("o1") or normalized.startswith("o3") or normalized.startswith("o4")


def _build_kwargs(
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int,
) -> dict[str, Any]:
    """
    Build LiteLLM kwargs with per-model param filtering.
    Different model families support different parameters.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "timeout": None,
    }

    if not _is_gpt5_model(model) and not _is_o_series_model(model):
        kwargs["temperature"] = temperature

    return kwargs


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class RouterResponse(BaseModel):
    content: str
    model: str
    tokens_used: int = 0
    cost: float = 0.0
    latency_ms: int = 0


class Router:
    """
    Agents call `router.complete(messages)` and get a RouterResponse back,
    or GenerationFailed when the upstream call errors.
    """

    def __init__(self, config: GenerationConfig):
        self.config = config
        litellm.suppress_debug_info = True

    @property
    def model(self) -> str:
        return self.config.model

    def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> RouterResponse:
        model = self.config.model
        kwargs = _build_kwargs(
            model,
            messages,
            self.config.temperature if temperature is None else temperature,
            max_tokens or self.config.max_tokens,
        )

        logger.debug(f"[ROUTER] → {model} ({len(messages)} messages)")
        start = time.monotonic()
        try:
            response = litellm.completion(**kwargs)
        except Exception as e:
            raise GenerationFailed(f"{model} call failed: {e}") from e
        elapsed_ms = int((time.monotonic() - start) * 1000)

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) if usage else 0

        try:
            cost = litellm.completion_cost(completion_response=response)
        except Exception as e:
            # Unpriced models are normal; cost is informational only
            logger.debug(f"[ROUTER] No cost for {model}: {e}")
            cost = 0.0

        logger.debug(f"[ROUTER] {model} complete — {tokens} tokens, ${cost:.4f}, {elapsed_ms}ms")

        return RouterResponse(
            content=content,
            model=model,
            tokens_used=tokens or 0,
            cost=cost or 0.0,
            latency_ms=elapsed_ms,
        )
