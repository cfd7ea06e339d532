"""Model provider resolution and model listing."""

from __future__ import annotations

import logging
from typing import Tuple

from .config import DEFAULT_MODEL, PREFERRED_MODEL_FAMILIES
from .providers import GeminiProvider, ModelProvider, OllamaProvider, OpenAIProvider

logger = logging.getLogger(__name__)

_provider_cache: dict[str, ModelProvider] = {}


def _new_provider(provider_name: str) -> ModelProvider:
    if provider_name == "openai":
        return OpenAIProvider()
    if provider_name in ("gemini", "google"):
        return GeminiProvider()
    return OllamaProvider()


def resolve_model(model: str | None) -> Tuple[ModelProvider, str]:
    """
    Resolve provider and underlying model name from a model string.

    Expected formats:
    - "provider:model_name" (e.g. "openai:gpt-4.1-nano", "gemini:gemini-2.5-flash")
    - "model_name" (no colon) -> treated as an Ollama model.
    Empty input falls back to DEFAULT_MODEL.
    """
    value = (model or "").strip() or DEFAULT_MODEL
    if ":" in value:
        provider_name, raw_model = value.split(":", 1)
        provider_name = provider_name.strip().lower()
        model_name = raw_model.strip()
    else:
        provider_name, model_name = "ollama", value

    if provider_name not in _provider_cache and provider_name not in ("openai", "gemini", "google", "ollama"):
        logger.warning("Unknown model provider %r; using Ollama", provider_name)
        provider_name = "ollama"
    if provider_name not in _provider_cache:
        _provider_cache[provider_name] = _new_provider(provider_name)
    return _provider_cache[provider_name], model_name


def register_provider(name: str, provider: ModelProvider) -> None:
    """Use `provider` for model strings prefixed with `name:`."""
    _provider_cache[name.strip().lower()] = provider


def select_default_model(available: list[str], configured: str | None = None) -> str | None:
    """Pick the configured model if served, else the first preferred family, else the first model."""
    if not available:
        return None
    if configured and configured in available:
        return configured
    for family in PREFERRED_MODEL_FAMILIES:
        for name in available:
            if family in name.lower():
                return name
    return available[0]


async def list_models(provider_name: str = "openai") -> list[str]:
    """Model ids served by a provider, prefixed as `provider:model`. Failures yield []."""
    provider, _ = resolve_model(f"{provider_name}:")
    try:
        models = await provider.list_models()
    except Exception as exc:
        logger.error("Could not list models for %s: %s", provider_name, exc)
        return []
    return [f"{provider_name}:{m}" for m in sorted(models)]
