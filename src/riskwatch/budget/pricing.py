from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Mapping, Optional, Tuple

from ..constants import Limits
from ..logging import RiskWatchLogger

PriceKey = Tuple[str, str]


@dataclass(frozen=True)
class ModelRates:
    """USD per 1K tokens."""

    input_per_1k: Decimal
    output_per_1k: Decimal


def _rates(input_per_1k: str, output_per_1k: str) -> ModelRates:
    return ModelRates(Decimal(input_per_1k), Decimal(output_per_1k))


DEFAULT_RATES: Dict[PriceKey, ModelRates] = {
    ("openai", "gpt-4o"): _rates("0.0025", "0.01"),
    ("openai", "gpt-4o-mini"): _rates("0.00015", "0.0006"),
    ("openai", "gpt-4.1"): _rates("0.002", "0.008"),
    ("openai", "gpt-4.1-mini"): _rates("0.0004", "0.0016"),
    ("openai", "gpt-4-turbo"): _rates("0.01", "0.03"),
    ("openai", "gpt-3.5-turbo"): _rates("0.0005", "0.0015"),
    ("anthropic", "claude-sonnet-4-5-20250929"): _rates("0.003", "0.015"),
    ("anthropic", "claude-haiku-4-5-20251001"): _rates("0.001", "0.005"),
    ("gemini", "gemini-2.5-pro"): _rates("0.00125", "0.01"),
    ("gemini", "gemini-2.5-flash"): _rates("0.0003", "0.0025"),
    ("gemini", "gemini-2.0-flash"): _rates("0.0001", "0.0004"),
    ("offline", "keyword-heuristic"): _rates("0", "0"),
}

ZERO_RATES = _rates("0", "0")


class PricingCatalog:
    """Static (provider, model) -> per-1K token rates."""

    def __init__(
        self,
        rates: Optional[Mapping[PriceKey, ModelRates]] = None,
        *,
        logger: Optional[RiskWatchLogger] = None,
    ) -> None:
        self._rates: Dict[PriceKey, ModelRates] = dict(DEFAULT_RATES if rates is None else rates)
        self.logger = logger

    @classmethod
    def with_overrides(
        cls,
        overrides: Mapping[str, Mapping[str, float]],
        *,
        logger: Optional[RiskWatchLogger] = None,
    ) -> "PricingCatalog":
        """Build the default catalog plus ``{"provider/model": {"input", "output"}}`` entries."""
        rates = dict(DEFAULT_RATES)
        for key, value in overrides.items():
            provider, model = key.split("/", 1)
            rates[(provider, model)] = ModelRates(
                Decimal(str(value.get("input", 0))),
                Decimal(str(value.get("output", 0))),
            )
        return cls(rates, logger=logger)

    def lookup(self, provider: str, model: str) -> Optional[ModelRates]:
        return self._rates.get((provider, model))

    def rates_for(self, provider: str, model: str) -> ModelRates:
        rates = self.lookup(provider, model)
        if rates is None:
            if self.logger is not None:
                self.logger.warning("Unknown pricing, treating call as free", provider=provider, model=model)
            return ZERO_RATES
        return rates

    def cost(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> Decimal:
        """Cost of one call, rounded half-up to the ledger quantum."""
        rates = self.rates_for(provider, model)
        raw = (Decimal(int(input_tokens)) / 1000) * rates.input_per_1k + (
            Decimal(int(output_tokens)) / 1000
        ) * rates.output_per_1k
        return raw.quantize(Limits.COST_QUANTUM, rounding=ROUND_HALF_UP)
