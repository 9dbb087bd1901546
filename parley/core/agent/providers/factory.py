from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from parley.utils.logger import logger

from ..config.schema import AssistantConfig, LLMSettings
from ..errors import ProviderConfigurationError
from .base import LLMProvider
from .gemini import DEFAULT_GEMINI_MODEL, GeminiProvider
from .openai_compat import OpenAICompatProvider, OpenAICompatResolved

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
_LOCAL_API_KEY = "not-needed"


@dataclass(frozen=True)
class ProviderHealth:
    ok: bool
    reason: str = ""


def _settings(config: AssistantConfig | LLMSettings) -> LLMSettings:
    return config.llm if isinstance(config, AssistantConfig) else config


def provider_health(config: AssistantConfig | LLMSettings) -> ProviderHealth:
    """Report whether the configured provider can be built. No clients are created."""
    settings = _settings(config)
    provider = settings.provider
    if provider == "gemini":
        if not settings.provider_config("gemini").api_key:
            return ProviderHealth(
                False,
                'AI provider "gemini" selected but GEMINI_API_KEY is missing.',
            )
        return ProviderHealth(True)
    if provider == "openai":
        if not settings.provider_config("openai").api_base:
            return ProviderHealth(
                False,
                'AI provider "openai" selected but OPENAI_BASE_URL is missing.',
            )
        return ProviderHealth(True)
    return ProviderHealth(False, f'Unsupported AI provider "{provider}".')


def create_provider(
    config: AssistantConfig | LLMSettings,
    *,
    client_factory: Optional[Callable[..., Any]] = None,
) -> LLMProvider:
    """Build the adapter selected by ``config.llm.provider``.

    Raises ``ProviderConfigurationError`` when a required credential or
    endpoint is missing.
    """
    health = provider_health(config)
    if not health.ok:
        raise ProviderConfigurationError(health.reason)

    settings = _settings(config)
    if settings.provider == "gemini":
        cfg = settings.provider_config("gemini")
        provider: LLMProvider = GeminiProvider(
            api_key=cfg.api_key,
            model=cfg.model or DEFAULT_GEMINI_MODEL,
            model_factory=client_factory,
        )
    else:
        cfg = settings.provider_config("openai")
        resolved = OpenAICompatResolved(
            model=cfg.model or DEFAULT_OPENAI_MODEL,
            api_key=cfg.api_key or _LOCAL_API_KEY,
            base_url=cfg.api_base.rstrip("/"),
            native_tools=cfg.native_tools,
            vision=cfg.vision,
        )
        provider = OpenAICompatProvider(
            resolved=resolved, client_factory=client_factory
        )
    logger.info("LLM provider ready: %s", provider.name())
    return provider
