from .base import LLMProvider, ProviderResult, ToolCallRequest
from .factory import ProviderHealth, create_provider, provider_health
from .gemini import GeminiProvider, sanitize_schema
from .openai_compat import OpenAICompatProvider, OpenAICompatResolved
from .tool_contract import DirectiveParse, build_contract_prompt, split_directives

__all__ = [
    "DirectiveParse",
    "GeminiProvider",
    "LLMProvider",
    "OpenAICompatProvider",
    "OpenAICompatResolved",
    "ProviderHealth",
    "ProviderResult",
    "ToolCallRequest",
    "build_contract_prompt",
    "create_provider",
    "provider_health",
    "sanitize_schema",
    "split_directives",
]
