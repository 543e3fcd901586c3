from __future__ import annotations

from .anthropic_provider import AnthropicProvider
from .base import Prompt, ProviderAdapter, ProviderResponse
from .gemini_provider import GeminiProvider
from .offline_provider import OfflineProvider
from .openai_provider import OpenAIProvider

PROVIDERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "offline": OfflineProvider,
}


def detect_provider_from_model(model: str, *, default_provider: str = "openai") -> str:
    """Infer provider from model name."""
    lower = (model or "").strip().lower()

    if lower.startswith("claude-"):
        return "anthropic"
    if lower.startswith("gemini-"):
        return "gemini"
    if lower.startswith(("gpt-", "o1-", "o3-", "o4-")):
        return "openai"
    if lower == "keyword-heuristic":
        return "offline"

    return default_provider


__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "OfflineProvider",
    "OpenAIProvider",
    "PROVIDERS",
    "Prompt",
    "ProviderAdapter",
    "ProviderResponse",
    "detect_provider_from_model",
]
