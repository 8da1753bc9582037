"""Provider selection from settings.

An explicit provider name wins.  Otherwise the first provider with a
configured API key is used, in :data:`PROVIDER_PRECEDENCE` order.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from .base import ProviderConfigError
from .openai_compat import DEFAULT_API_BASE, OpenAICompatProvider

logger = logging.getLogger(__name__)

PROVIDER_PRECEDENCE: Tuple[str, ...] = (
    "openrouter",
    "deepseek",
    "openai",
    "vllm",
    "gemini",
    "zhipu",
    "groq",
)

DEFAULT_API_BASES: Dict[str, str] = {
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com",
    "openai": DEFAULT_API_BASE,
    "vllm": "",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "zhipu": "https://open.bigmodel.cn/api/paas/v4/",
    "groq": "https://api.groq.com/openai/v1",
}


def _build(name: str, settings: Any) -> OpenAICompatProvider:
    api_key = settings.provider_keys.get(name, "")
    api_base = settings.provider_bases.get(name) or DEFAULT_API_BASES.get(name) or DEFAULT_API_BASE
    logger.info("Using provider %s (%s)", name, api_base)
    return OpenAICompatProvider(
        api_key=api_key,
        api_base=api_base,
        default_model=settings.model,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
    )


def create_provider(settings: Any) -> OpenAICompatProvider:
    """Return the chat provider described by ``settings``.

    ``settings`` needs ``provider``, ``model``, ``max_tokens``,
    ``temperature`` plus the ``provider_keys`` and ``provider_bases``
    mappings keyed by provider name.

    Raises
    ------
    ProviderConfigError
        If the explicit provider is unknown or no provider has a key.
    """
    explicit = (settings.provider or "").strip().lower()
    if explicit:
        if explicit not in DEFAULT_API_BASES:
            raise ProviderConfigError(f"unknown provider: {settings.provider}")
        return _build(explicit, settings)

    for name in PROVIDER_PRECEDENCE:
        if settings.provider_keys.get(name):
            return _build(name, settings)
    raise ProviderConfigError("no API key configured for any provider")


__all__ = ["create_provider", "PROVIDER_PRECEDENCE", "DEFAULT_API_BASES"]
