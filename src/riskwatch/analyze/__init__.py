"""Analysis pipeline: providers, retry, prompt ladder, normalization."""

from .cooldown import ProviderCooldown
from .executor import CallExecutor, Retryability, RetryPolicy, classify_provider_error
from .fallback import fallback_result
from .normalizer import ParseFailure, ResponseNormalizer
from .orchestrator import AnalysisOrchestrator
from .prompts import PromptBuilder

__all__ = [
    "AnalysisOrchestrator",
    "CallExecutor",
    "ParseFailure",
    "PromptBuilder",
    "ProviderCooldown",
    "ResponseNormalizer",
    "RetryPolicy",
    "Retryability",
    "classify_provider_error",
    "fallback_result",
]
