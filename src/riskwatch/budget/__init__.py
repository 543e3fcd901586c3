"""Cost accounting: pricing, token estimation and the monthly ledger."""

from .ledger import BudgetLedger, BudgetState, BudgetSummary, MonthKey, MonthlyUsage, UsageRecord
from .pricing import DEFAULT_RATES, ModelRates, PricingCatalog
from .tokens import ESTIMATORS, TokenEstimator, char_ratio_estimator, resolve_tokens, script_aware_estimator

__all__ = [
    "BudgetLedger",
    "BudgetState",
    "BudgetSummary",
    "DEFAULT_RATES",
    "ESTIMATORS",
    "ModelRates",
    "MonthKey",
    "MonthlyUsage",
    "PricingCatalog",
    "TokenEstimator",
    "UsageRecord",
    "char_ratio_estimator",
    "resolve_tokens",
    "script_aware_estimator",
]
