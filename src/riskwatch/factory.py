from __future__ import annotations

from typing import List, Optional

from .analyze import AnalysisOrchestrator, CallExecutor, PromptBuilder, ProviderCooldown, RetryPolicy
from .analyze.providers import (
    PROVIDERS,
    OfflineProvider,
    ProviderAdapter,
    detect_provider_from_model,
)
from .budget import ESTIMATORS, BudgetLedger, PricingCatalog
from .config import RiskWatchConfig
from .errors import ConfigurationError
from .logging import RiskWatchLogger


def build_ledger(config: RiskWatchConfig, logger: Optional[RiskWatchLogger] = None) -> BudgetLedger:
    catalog = PricingCatalog.with_overrides(config.extra_pricing, logger=logger)
    return BudgetLedger(
        config.ledger_path,
        catalog,
        monthly_limit=config.monthly_budget,
        emergency_limit=config.emergency_budget,
        forced_free=config.force_free_mode,
        retain_months=config.retain_months,
        logger=logger,
    )


def build_adapters(config: RiskWatchConfig, logger: Optional[RiskWatchLogger] = None) -> List[ProviderAdapter]:
    """Paid adapters in configured order (only those with a key), then the offline one."""
    adapters: List[ProviderAdapter] = []
    for provider in config.provider_chain:
        api_key = config.api_key_for(provider)
        if not api_key:
            if logger is not None:
                logger.warning("Provider has no API key, skipping", provider=provider)
            continue
        model = config.model_for(provider)
        if logger is not None and detect_provider_from_model(model, default_provider=provider) != provider:
            logger.warning("Model name does not look like this provider's", provider=provider, model=model)

        options = {"temperature": config.temperature, "timeout": config.provider_timeout_seconds}
        if provider == "gemini":
            options["base_url"] = config.gemini_base_url
        adapters.append(PROVIDERS[provider](api_key, model, **options))

    if config.offline_provider:
        adapters.append(OfflineProvider())
    return adapters


def build_orchestrator(
    config: RiskWatchConfig,
    logger: Optional[RiskWatchLogger] = None,
    *,
    ledger: Optional[BudgetLedger] = None,
) -> AnalysisOrchestrator:
    """Wire every component from configuration."""
    adapters = build_adapters(config, logger)
    if not adapters:
        raise ConfigurationError(
            "No analysis provider configured: set a provider API key or enable RISKWATCH_OFFLINE_PROVIDER"
        )

    executor = CallExecutor(
        RetryPolicy(
            max_attempts=config.max_retries,
            base_delay=config.retry_base_delay,
            backoff_multiplier=config.backoff_multiplier,
        ),
        logger=logger,
    )
    return AnalysisOrchestrator(
        adapters,
        ledger or build_ledger(config, logger),
        executor=executor,
        prompt_builder=PromptBuilder(config.max_output_tokens),
        max_escalations=config.max_escalations,
        request_timeout=config.request_timeout_seconds,
        estimator=ESTIMATORS[config.token_estimator](config.chars_per_token),
        cooldown=ProviderCooldown(config.quota_cooldown_seconds),
        logger=logger,
    )
