from __future__ import annotations

import calendar
import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from ..constants import Limits, Mode
from ..logging import RiskWatchLogger
from .pricing import PriceKey, PricingCatalog

ZERO = Decimal("0")


@dataclass(frozen=True, order=True)
class MonthKey:
    year: int
    month: int

    @classmethod
    def from_datetime(cls, moment: datetime) -> "MonthKey":
        return cls(moment.year, moment.month)

    @classmethod
    def parse(cls, text: str) -> "MonthKey":
        year, month = text.split("-", 1)
        key = cls(int(year), int(month))
        if not 1 <= key.month <= 12:
            raise ValueError(f"Invalid month key: {text}")
        return key

    def months_since(self, other: "MonthKey") -> int:
        return (self.year * 12 + self.month) - (other.year * 12 + other.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class UsageRecord:
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: Decimal = ZERO

    def add(self, input_tokens: int, output_tokens: int, cost: Decimal) -> None:
        self.calls += 1
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cost += cost

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "cost": float(self.cost),
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "UsageRecord":
        return cls(
            calls=int(data.get("calls", 0) or 0),
            input_tokens=int(data.get("inputTokens", 0) or 0),
            output_tokens=int(data.get("outputTokens", 0) or 0),
            cost=_to_decimal(data.get("cost", 0)),
        )


@dataclass
class MonthlyUsage:
    total_cost: Decimal = ZERO
    api_usage: Dict[str, Dict[str, UsageRecord]] = field(default_factory=dict)

    def record(self, provider: str, model: str) -> UsageRecord:
        return self.api_usage.setdefault(provider, {}).setdefault(model, UsageRecord())

    def to_dict(self) -> dict:
        return {
            "totalCost": float(self.total_cost),
            "apiUsage": {
                provider: {model: rec.to_dict() for model, rec in models.items()}
                for provider, models in self.api_usage.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "MonthlyUsage":
        usage = cls()
        for provider, models in (data.get("apiUsage") or {}).items():
            for model, raw in (models or {}).items():
                usage.api_usage.setdefault(provider, {})[model] = UsageRecord.from_dict(raw or {})
        if "totalCost" in data:
            usage.total_cost = _to_decimal(data["totalCost"])
        else:
            usage.total_cost = sum(
                (rec.cost for models in usage.api_usage.values() for rec in models.values()),
                ZERO,
            )
        return usage


@dataclass(frozen=True)
class BudgetState:
    month: MonthKey
    usage: Mapping[PriceKey, UsageRecord]
    total_cost: Decimal
    monthly_limit: Decimal
    emergency_limit: Decimal
    forced_free: bool


@dataclass(frozen=True)
class BudgetSummary:
    month: MonthKey
    mode: Mode
    total_cost: Decimal
    monthly_limit: Decimal
    used_percentage: float
    remaining: Decimal
    projected_month_cost: Decimal
    total_calls: int
    total_tokens: int


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(Limits.COST_QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return ZERO


class BudgetLedger:
    """
    Monthly usage and cost accounting persisted to a JSON file.

    Single writer: every read and write goes through one lock, and each
    recorded call is flushed to disk before ``record_usage`` returns.
    """

    def __init__(
        self,
        path: Path,
        catalog: PricingCatalog,
        *,
        monthly_limit: float | Decimal,
        emergency_limit: float | Decimal,
        forced_free: bool = False,
        retain_months: int = Limits.RETAIN_MONTHS,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[RiskWatchLogger] = None,
    ) -> None:
        self.path = Path(path)
        self.catalog = catalog
        self.monthly_limit = Decimal(str(monthly_limit))
        self.emergency_limit = Decimal(str(emergency_limit))
        self.forced_free = forced_free
        self.retain_months = retain_months
        self._clock = clock or datetime.now
        self.logger = logger
        self._lock = threading.Lock()
        self._months: Dict[MonthKey, MonthlyUsage] = self._load()

    def mode(self) -> Mode:
        """FREE when forced, or when the month's spend reached either limit."""
        if self.forced_free:
            return Mode.FREE
        with self._lock:
            total = self._current()[1].total_cost
        if total >= self.monthly_limit or total >= self.emergency_limit:
            return Mode.FREE
        return Mode.PAID

    def record_usage(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> Decimal:
        """Price one completed call, add it to this month and persist. Returns the call cost."""
        input_tokens = max(0, int(input_tokens))
        output_tokens = max(0, int(output_tokens))
        cost = self.catalog.cost(provider, model, input_tokens, output_tokens)
        with self._lock:
            month, usage = self._current()
            usage.record(provider, model).add(input_tokens, output_tokens, cost)
            usage.total_cost += cost
            total = usage.total_cost
            self._persist()
        if self.logger is not None:
            self.logger.info(
                "Tracked API usage",
                provider=provider,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_usd=str(cost),
                month=str(month),
                month_total_usd=str(total),
            )
        return cost

    def state(self) -> BudgetState:
        with self._lock:
            month, usage = self._current()
            records = {
                (provider, model): UsageRecord(rec.calls, rec.input_tokens, rec.output_tokens, rec.cost)
                for provider, models in usage.api_usage.items()
                for model, rec in models.items()
            }
            total = usage.total_cost
        return BudgetState(
            month=month,
            usage=records,
            total_cost=total,
            monthly_limit=self.monthly_limit,
            emergency_limit=self.emergency_limit,
            forced_free=self.forced_free,
        )

    def summary(self) -> BudgetSummary:
        state = self.state()
        now = self._clock()
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        projected = (state.total_cost / now.day * days_in_month).quantize(
            Limits.COST_QUANTUM, rounding=ROUND_HALF_UP
        )
        used = (
            float(state.total_cost / state.monthly_limit * 100) if state.monthly_limit > 0 else 0.0
        )
        return BudgetSummary(
            month=state.month,
            mode=self.mode(),
            total_cost=state.total_cost,
            monthly_limit=state.monthly_limit,
            used_percentage=round(used, 2),
            remaining=state.monthly_limit - state.total_cost,
            projected_month_cost=projected,
            total_calls=sum(rec.calls for rec in state.usage.values()),
            total_tokens=sum(rec.input_tokens + rec.output_tokens for rec in state.usage.values()),
        )

    def _current(self) -> tuple[MonthKey, MonthlyUsage]:
        """Current month bucket; creates it (and prunes old months) on rollover. Lock held."""
        month = MonthKey.from_datetime(self._clock())
        usage = self._months.get(month)
        if usage is None:
            usage = self._months[month] = MonthlyUsage()
            stale = [key for key in self._months if month.months_since(key) >= self.retain_months]
            for key in stale:
                del self._months[key]
            if self.logger is not None:
                self.logger.info("Started new usage month", month=str(month), pruned=[str(k) for k in stale])
        return month, usage

    def _load(self) -> Dict[MonthKey, MonthlyUsage]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            if self.logger is not None:
                self.logger.error("Could not read cost ledger, starting empty", path=str(self.path), error=str(exc))
            return {}
        months: Dict[MonthKey, MonthlyUsage] = {}
        for key, data in (raw.items() if isinstance(raw, dict) else []):
            try:
                months[MonthKey.parse(key)] = MonthlyUsage.from_dict(data or {})
            except (ValueError, AttributeError):
                if self.logger is not None:
                    self.logger.warning("Skipping unrecognized ledger entry", key=key)
        return months

    def _persist(self) -> None:
        payload = {str(key): self._months[key].to_dict() for key in sorted(self._months)}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)
