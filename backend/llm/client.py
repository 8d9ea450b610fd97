"""Reasoning backend factory.

Provides ``get_reasoning_backend()`` which builds the configured provider
from settings. This is the only place API keys are read; the controller
receives a ready-made adapter and never sees a credential.
"""

from __future__ import annotations

import logging

from config import Settings, get_settings
from llm.providers import ReasoningBackend, create_provider

logger = logging.getLogger(__name__)


def get_reasoning_backend(
    provider: str | None = None,
    model: str | None = None,
    settings: Settings | None = None,
) -> ReasoningBackend:
    """Create a reasoning backend instance.

    Parameters
    ----------
    provider : str | None
        Provider name. Defaults to settings.default_provider.
    model : str | None
        Model ID override. If None, uses the default for the provider.
    """
    settings = settings or get_settings()
    provider = provider or settings.default_provider

    backend = create_provider(
        provider=provider,
        model=model,
        openai_api_key=settings.openai_api_key,
        openai_model=settings.openai_model,
        siliconflow_api_key=settings.siliconflow_api_key,
        siliconflow_model=settings.siliconflow_model,
        anthropic_api_key=settings.anthropic_api_key,
        anthropic_model=settings.anthropic_model,
        gemini_api_key=settings.gemini_api_key,
        gemini_model=settings.gemini_model,
        gemini_base_url=settings.gemini_base_url,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
    )
    logger.info("Reasoning backend: %s (%s)", backend.provider_name, backend.model_name)
    return backend
