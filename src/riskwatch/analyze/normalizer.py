from __future__ import annotations

from dataclasses import dataclass
import json
import re
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from ..constants import Limits
from ..models import (
    DISCRIMINANTS,
    SCHEMAS,
    AnalysisKind,
    AnyAnalysis,
    OpportunityAnalysis,
    OpportunityLevel,
    Provenance,
    RiskAnalysis,
    RiskLevel,
)

SALVAGE_CONFIDENCE = 0.3

_FENCE_MARKER = re.compile(r"```[A-Za-z]*")


@dataclass(frozen=True)
class ParseFailure:
    raw_text: str
    reason: str


ParseOutcome = Union[RiskAnalysis, OpportunityAnalysis, ParseFailure]


class ResponseNormalizer:
    """Turn backend output into a validated analysis result."""

    def parse(
        self,
        raw: Any,
        kind: AnalysisKind,
        provenance: Optional[Provenance] = None,
    ) -> ParseOutcome:
        """
        Parse raw backend output for ``kind``.

        Handles:
        - Already-built result models (returned unchanged)
        - Mappings carrying the kind's discriminant field
        - Text with markdown code fences or prose around the JSON object

        Never raises; anything unusable comes back as ParseFailure.
        """
        schema = SCHEMAS[kind]
        if isinstance(raw, schema):
            return raw
        if isinstance(raw, BaseModel):
            return ParseFailure(raw_text=str(raw), reason=f"Unexpected model {type(raw).__name__}")
        if isinstance(raw, Mapping):
            return self._validate(dict(raw), kind, provenance, raw_text=json.dumps(raw, default=str))

        text = raw if isinstance(raw, str) else ("" if raw is None else str(raw))
        if not text.strip():
            return ParseFailure(raw_text=text, reason="Empty response")

        span = extract_json_object(strip_fences(text))
        if span is None:
            return ParseFailure(raw_text=text, reason="No JSON object found")
        try:
            data = json.loads(span)
        except json.JSONDecodeError as exc:
            return ParseFailure(raw_text=text, reason=f"Invalid JSON: {exc}")
        if not isinstance(data, dict):
            return ParseFailure(raw_text=text, reason="JSON value is not an object")
        return self._validate(data, kind, provenance, raw_text=text)

    def salvage(self, failure: ParseFailure, kind: AnalysisKind, provenance: Provenance) -> AnyAnalysis:
        """Best-effort result from text that would not parse."""
        summary = clean_text(failure.raw_text)[: Limits.MAX_SALVAGE_SUMMARY]
        if not summary:
            summary = "The analysis response could not be interpreted"
        partial = provenance.model_copy(update={"partial": True})
        if kind is AnalysisKind.RISK:
            return RiskAnalysis(
                is_high_risk=False,
                risk_level=RiskLevel.UNKNOWN,
                summary=summary,
                threats=[],
                confidence_score=SALVAGE_CONFIDENCE,
                recommendation="Review the latest news manually",
                provenance=partial,
            )
        return OpportunityAnalysis(
            is_opportunity=False,
            opportunity_level=OpportunityLevel.UNKNOWN,
            summary=summary,
            positive_factors=[],
            confidence_score=SALVAGE_CONFIDENCE,
            provenance=partial,
        )

    def _validate(
        self,
        data: dict,
        kind: AnalysisKind,
        provenance: Optional[Provenance],
        *,
        raw_text: str,
    ) -> ParseOutcome:
        discriminant = DISCRIMINANTS[kind]
        if not isinstance(data.get(discriminant), bool):
            return ParseFailure(raw_text=raw_text, reason=f"Missing boolean {discriminant}")
        if not isinstance(data.get("summary"), str) or not data["summary"].strip():
            return ParseFailure(raw_text=raw_text, reason="Missing summary")

        payload = {key: value for key, value in data.items() if key != "provenance"}
        if provenance is not None:
            payload["provenance"] = provenance
        try:
            return SCHEMAS[kind].model_validate(payload)
        except ValidationError as exc:
            return ParseFailure(raw_text=raw_text, reason=f"Schema mismatch: {exc.error_count()} error(s)")


def strip_fences(text: str) -> str:
    """Drop every markdown fence marker, keeping the text between them."""
    return _FENCE_MARKER.sub("", text).strip()


def extract_json_object(text: str) -> Optional[str]:
    """First balanced ``{...}`` span; braces inside strings are ignored."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return None


def clean_text(text: str) -> str:
    without_fences = re.sub(r"```[a-zA-Z]*", " ", text or "")
    return " ".join(without_fences.split())
