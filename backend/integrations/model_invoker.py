"""Model invoker seam for the executor service.

The executor composes prompts but does not talk to model providers itself;
a ModelInvoker is plugged in at startup (or in tests) to do that.
"""

from typing import Any, Dict, Optional, Protocol

import structlog

from core.exceptions import ModelProviderError
from integrations.prompt_composer import ComposedPrompt

logger = structlog.get_logger(__name__)


class ModelInvoker(Protocol):
    """Sends a composed prompt to a model provider and returns its answer."""

    async def generate(self, prompt: ComposedPrompt, provider_config: Dict[str, Any]) -> Any:
        ...


class UnconfiguredModelInvoker:
    """Default invoker: every AI task fails with a clear message."""

    async def generate(self, prompt: ComposedPrompt, provider_config: Dict[str, Any]) -> Any:
        provider = (provider_config or {}).get("provider", "none")
        logger.warning("AI task requested without a model provider", kind=prompt.kind.value, provider=provider)
        raise ModelProviderError(
            f"No model provider configured for {prompt.kind.value} tasks (provider: {provider})"
        )


_invoker: Optional[ModelInvoker] = None


def get_model_invoker() -> ModelInvoker:
    """Get the active invoker, defaulting to UnconfiguredModelInvoker."""
    global _invoker
    if _invoker is None:
        _invoker = UnconfiguredModelInvoker()
    return _invoker


def set_model_invoker(invoker: Optional[ModelInvoker]) -> None:
    """Install ``invoker`` process-wide (``None`` restores the default)."""
    global _invoker
    _invoker = invoker
