from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from ..models import AnalysisKind, AnalysisRequest, News
from .providers.base import Prompt


@dataclass(frozen=True)
class PromptLevel:
    max_items: int
    body_chars: int
    output_ratio: float
    include_guidance: bool


# Level 0 is the full prompt; each later level is a simplification step.
LADDER: Tuple[PromptLevel, ...] = (
    PromptLevel(max_items=8, body_chars=600, output_ratio=1.0, include_guidance=True),
    PromptLevel(max_items=5, body_chars=240, output_ratio=0.75, include_guidance=True),
    PromptLevel(max_items=3, body_chars=0, output_ratio=0.5, include_guidance=False),
    PromptLevel(max_items=1, body_chars=0, output_ratio=0.35, include_guidance=False),
)

MIN_OUTPUT_TOKENS = 128

SYSTEM_PROMPT = (
    "You are a careful financial news analyst. "
    "Answer with a single JSON object only, no markdown and no commentary."
)

RISK_SCHEMA = """{
  "isHighRisk": boolean (true if the investment could be lost entirely or the company may close),
  "riskLevel": "low|medium|high|critical",
  "summary": "short summary of the situation",
  "threats": ["threat"],
  "confidenceScore": 0.0-1.0,
  "recommendation": "what the holder should do",
  "keyNews": "the most important headline",
  "sourceUrl": "URL of the key news item"
}"""

OPPORTUNITY_SCHEMA = """{
  "isOpportunity": boolean (true if the price is likely to rise),
  "opportunityLevel": "low|medium|high|excellent",
  "summary": "short summary of the opportunity",
  "positiveFactors": ["factor"],
  "confidenceScore": 0.0-1.0,
  "timeframe": "when the effect is expected",
  "priceTarget": "expected price move",
  "keyNews": "the most important headline",
  "sourceUrl": "URL of the key news item"
}"""

MINIMAL_SCHEMA = {
    AnalysisKind.RISK: '{"isHighRisk": bool, "riskLevel": "low|medium|high|critical", "summary": str, "confidenceScore": 0-1}',
    AnalysisKind.OPPORTUNITY: '{"isOpportunity": bool, "opportunityLevel": "low|medium|high|excellent", "summary": str, "confidenceScore": 0-1}',
}

RISK_GUIDANCE = """Focus on:
1. Bankruptcy or business closure
2. Bans or export restrictions
3. Major lawsuits
4. Severe regulatory changes
5. Financial crises"""

OPPORTUNITY_GUIDANCE = """Focus on:
1. Earnings above expectations
2. Acquisitions or new partnerships
3. Large contracts or new customers
4. Innovation or new products
5. Favourable policy changes"""


class PromptBuilder:
    """Builds analysis prompts, shorter at each ladder level."""

    def __init__(self, base_output_tokens: int = 1024) -> None:
        self.base_output_tokens = base_output_tokens

    @property
    def max_level(self) -> int:
        return len(LADDER) - 1

    def output_tokens(self, level: int) -> int:
        step = LADDER[min(level, self.max_level)]
        floor = min(MIN_OUTPUT_TOKENS, self.base_output_tokens)
        return max(floor, int(self.base_output_tokens * step.output_ratio))

    def build(self, request: AnalysisRequest, level: int = 0) -> Prompt:
        step = LADDER[min(level, self.max_level)]
        kind = request.kind
        verb = "risk" if kind is AnalysisKind.RISK else "investment opportunity"

        sections: List[str] = [f"Analyze the {verb} of this holding: {request.subject}"]
        sections.append("Latest news:\n" + self._evidence(request.evidence, step))

        if step.include_guidance:
            schema = RISK_SCHEMA if kind is AnalysisKind.RISK else OPPORTUNITY_SCHEMA
            sections.append(f"Reply with JSON only, in exactly this shape:\n{schema}")
            sections.append(RISK_GUIDANCE if kind is AnalysisKind.RISK else OPPORTUNITY_GUIDANCE)
        else:
            sections.append(f"Reply with one short JSON object: {MINIMAL_SCHEMA[kind]}")

        return Prompt(
            system=SYSTEM_PROMPT,
            user="\n\n".join(sections),
            kind=kind,
            request=request,
            level=level,
        )

    @staticmethod
    def _evidence(evidence: Tuple[News, ...], step: PromptLevel) -> str:
        items = evidence[: step.max_items]
        if not items:
            return "(no news available)"
        lines = []
        for item in items:
            line = f"- {item.title}"
            if item.source:
                line += f" [{item.source}]"
            if item.url:
                line += f" {item.url}"
            body = " ".join(item.body.split())
            if step.body_chars and body:
                if len(body) > step.body_chars:
                    body = body[: step.body_chars].rstrip() + "..."
                line += f"\n  {body}"
            lines.append(line)
        return "\n".join(lines)
