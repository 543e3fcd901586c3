from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel

LLMProviderType = Literal["openai", "anthropic", "gemini"]
LogLevel = Literal["debug", "info", "warning", "error"]
Tier = Literal["paid", "free", "fallback"]


class AnalysisKind(str, Enum):
    RISK = "risk"
    OPPORTUNITY = "opportunity"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class OpportunityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXCELLENT = "excellent"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class News:
    """A single evidence item supplied by the news collector."""

    title: str
    body: str = ""
    source: str = ""
    published_at: Optional[datetime] = None
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "News":
        published = data.get("published_at") or data.get("publishedAt")
        if isinstance(published, str) and published:
            published = datetime.fromisoformat(published.replace("Z", "+00:00"))
        return cls(
            title=str(data.get("title") or ""),
            body=str(data.get("body") or data.get("description") or ""),
            source=str(data.get("source") or ""),
            published_at=published or None,
            url=str(data.get("url") or ""),
        )


@dataclass(frozen=True)
class AnalysisRequest:
    subject: str
    evidence: Tuple[News, ...] = field(default_factory=tuple)
    kind: AnalysisKind = AnalysisKind.RISK

    def __post_init__(self) -> None:
        # Accept any iterable of News but store a tuple so the request stays hashable.
        object.__setattr__(self, "evidence", tuple(self.evidence))


class _Schema(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class Provenance(_Schema):
    provider: str = "unknown"
    model: str = "unknown"
    tier: Tier = "paid"
    degraded: bool = False
    partial: bool = False


class AnalysisResult(_Schema):
    """Fields shared by every analysis kind."""

    summary: str
    confidence_score: float = 0.5
    key_news: str = ""
    source_url: str = ""
    provenance: Provenance = Field(default_factory=Provenance)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            score = float(value)
        except (TypeError, ValueError):
            return 0.5
        if score != score:  # NaN
            return 0.5
        return min(1.0, max(0.0, score))

    @field_validator("summary", "key_news", "source_url", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


def _coerce_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return value


class RiskAnalysis(AnalysisResult):
    is_high_risk: StrictBool
    risk_level: RiskLevel = RiskLevel.UNKNOWN
    threats: List[str] = Field(default_factory=list)
    recommendation: str = ""

    @field_validator("risk_level", mode="before")
    @classmethod
    def _known_level(cls, value: Any) -> Any:
        if isinstance(value, RiskLevel):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in RiskLevel._value2member_map_:
            return normalized
        return RiskLevel.UNKNOWN

    @field_validator("threats", mode="before")
    @classmethod
    def _list(cls, value: Any) -> Any:
        return _coerce_list(value)

    @field_validator("recommendation", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return "" if value is None else value


class OpportunityAnalysis(AnalysisResult):
    is_opportunity: StrictBool
    opportunity_level: OpportunityLevel = OpportunityLevel.UNKNOWN
    positive_factors: List[str] = Field(default_factory=list)
    timeframe: str = ""
    price_target: str = ""

    @field_validator("opportunity_level", mode="before")
    @classmethod
    def _known_level(cls, value: Any) -> Any:
        if isinstance(value, OpportunityLevel):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in OpportunityLevel._value2member_map_:
            return normalized
        return OpportunityLevel.UNKNOWN

    @field_validator("positive_factors", mode="before")
    @classmethod
    def _list(cls, value: Any) -> Any:
        return _coerce_list(value)

    @field_validator("timeframe", "price_target", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


AnyAnalysis = Union[RiskAnalysis, OpportunityAnalysis]

SCHEMAS = {
    AnalysisKind.RISK: RiskAnalysis,
    AnalysisKind.OPPORTUNITY: OpportunityAnalysis,
}

DISCRIMINANTS = {
    AnalysisKind.RISK: "isHighRisk",
    AnalysisKind.OPPORTUNITY: "isOpportunity",
}
