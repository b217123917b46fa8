import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import openai
from openai import AsyncOpenAI

from arovia.domain import IPredictionService, PredictionRequest
from arovia.domain.entities import NO_CITATION
from arovia.domain.errors import (
    NonTransientUpstreamError,
    RateLimited,
    TransientUpstreamError,
)
from arovia.infrastructure.config import Settings
from arovia.domain.sanitizer import serialize_payload


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a medical risk-prediction assistant for prototyping only (not a doctor).
You will be given anonymized patient data: previous health records (labs, vitals, diagnoses) and a hypothetical future lifestyle.
Provide a concise JSON object with:
- a 1-2 sentence summary,
- baseline predictions: conditions, timeline (years) and probability percentages from the existing records alone,
- projection predictions: the same if the supplied lifestyle continues,
- deltas between projection and baseline for each condition,
- a short rationale, interventions and citations for each prediction,
- the top contributing features.

Return valid JSON only. Do not include any free-form text outside the JSON."""


ANALYSIS_PROMPT_TEMPLATE = """## Anonymized patient data (JSON):
{payload}

## Response Format (JSON):
{{
    "model_version": "{model_version}",
    "generated_on": "ISO-8601 datetime",
    "summary": "short string (<= 2 sentences)",
    "baseline": {{"predictions": [PREDICTION, ...]}},
    "projection": {{"predictions": [PREDICTION, ...]}},
    "deltas": [
        {{"condition": "string", "baseline_pct": number, "projection_pct": number, "delta_pct": number}}
    ],
    "explainability": {{
        "top_features": [{{"feature": "string", "impact": number (positive increases risk, negative decreases)}}]
    }}
}}

where PREDICTION is:
{{
    "condition": "string",
    "years": integer,
    "probability_pct": number,
    "rationale": "string (1-2 sentences)",
    "preventable": true | false,
    "interventions": ["actionable lifestyle step", ...],
    "citations": ["named database from the guidance list" or "{no_citation}"]
}}

## Background guidance: {health_databases}
For each predicted condition, include supporting named database(s) from the list above or "{no_citation}".
If uncertain, return probability_pct: -1 and citations: ["{no_citation}"] rather than fabricating values.

Respond ONLY with valid JSON, no additional text."""


def build_analysis_prompt(request: PredictionRequest) -> str:
    """Render the user message for one prediction request."""
    return ANALYSIS_PROMPT_TEMPLATE.format(
        payload=serialize_payload(request.payload),
        model_version=f"{request.model}-v1",
        health_databases=", ".join(request.health_databases) or "none supplied",
        no_citation=NO_CITATION,
    )


class OpenAIPredictionService(IPredictionService):
    """Prediction service backed by any OpenAI-compatible chat completions API."""

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self._settings = settings
        # Retries are owned by the analysis service, so the SDK's own are off.
        self._client = client or AsyncOpenAI(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )

    async def generate(self, request: PredictionRequest) -> str:
        """Call the chat completions endpoint in JSON mode and return the text."""
        try:
            completion = await self._client.chat.completions.create(
                model=request.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_analysis_prompt(request)},
                ],
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.RateLimitError as e:
            raise RateLimited() from e
        except openai.APIStatusError as e:
            error_cls = TransientUpstreamError if e.status_code >= 500 else NonTransientUpstreamError
            raise error_cls(
                f"Prediction service returned HTTP {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIConnectionError as e:
            raise TransientUpstreamError(f"Prediction service unreachable: {e}") from e

        usage = completion.usage
        if usage:
            logger.info(
                f"LLM usage: prompt_tokens={usage.prompt_tokens}, "
                f"completion_tokens={usage.completion_tokens}, total_tokens={usage.total_tokens}"
            )

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise TransientUpstreamError("Prediction service returned no textual output")
        return content.strip()


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


class MockPredictionService(IPredictionService):
    """
    Mock prediction service using weighted lifestyle risk factors.

    DESIGN RATIONALE:
    -----------------
    Lets the API run end to end without an LLM key. Output is deterministic
    and always in the current response shape:

    1. BASE RISK: every condition starts from a population base rate.
    2. RISK FACTORS: each recognized factor adds percentage points to the
       conditions it affects. Factors found in the stored records drive the
       baseline; the same factors plus the submitted lifestyle drive the
       projection.
    3. UNKNOWN: with no records and no lifestyle there is nothing to go on,
       so probabilities are the -1 sentinel and citations say so.

    LIMITATIONS:
    - Factors are additive, there are no interactions
    - Only top-level keys of each record payload are inspected
    """

    HORIZON_YEARS = 10
    MAX_PCT = 95.0

    BASE_RISK = {
        "Cardiovascular disease": 10.0,
        "Type 2 diabetes": 8.0,
        "Hypertension": 15.0,
        "COPD": 3.0,
        "Lung cancer": 1.5,
        "Liver disease": 2.0,
    }

    # factor -> {condition: added percentage points}
    FACTOR_WEIGHTS = {
        "smoker": {"Lung cancer": 12.0, "COPD": 15.0, "Cardiovascular disease": 10.0},
        "sedentary": {"Type 2 diabetes": 8.0, "Cardiovascular disease": 6.0},
        "obesity": {"Type 2 diabetes": 12.0, "Hypertension": 10.0, "Cardiovascular disease": 5.0},
        "heavy_drinking": {"Liver disease": 9.0, "Hypertension": 5.0},
        "high_sugar_diet": {"Type 2 diabetes": 10.0},
    }

    INTERVENTIONS = {
        "smoker": "Stop smoking",
        "sedentary": "150 minutes of moderate exercise per week",
        "obesity": "Gradual weight reduction",
        "heavy_drinking": "Keep alcohol under 14 units per week",
        "high_sugar_diet": "Cut sugary drinks and refined carbohydrates",
    }

    DEFAULT_CONDITIONS = ("Cardiovascular disease", "Type 2 diabetes")

    def __init__(self, settings: Settings):
        self._settings = settings

    async def generate(self, request: PredictionRequest) -> str:
        payload = request.payload or {}
        records = payload.get("baseline_records") or []
        lifestyle = payload.get("lifestyle") or {}

        baseline_factors: Set[str] = set()
        for record in records:
            baseline_factors |= self._detect_factors(record.get("payload") or {})
        lifestyle_factors = self._detect_factors(lifestyle)
        projection_factors = baseline_factors | lifestyle_factors

        known = bool(records) or bool(lifestyle)
        conditions = self._affected_conditions(projection_factors)
        citations = request.health_databases[:1] if known and request.health_databases else [NO_CITATION]

        baseline = [self._prediction(c, baseline_factors, known, citations) for c in conditions]
        projection = [self._prediction(c, projection_factors, known, citations) for c in conditions]

        document = {
            "model_version": f"{request.model}-mock",
            "generated_on": datetime.now(timezone.utc).isoformat(),
            "summary": self._summary(lifestyle_factors, known),
            "baseline": {"predictions": baseline},
            "projection": {"predictions": projection},
            "deltas": [
                self._delta(b["condition"], b["probability_pct"], p["probability_pct"])
                for b, p in zip(baseline, projection)
            ],
            "explainability": {
                "top_features": [
                    {"feature": factor, "impact": round(sum(self.FACTOR_WEIGHTS[factor].values()) / 100, 2)}
                    for factor in sorted(lifestyle_factors)
                ]
            },
        }
        return json.dumps(document)

    def _detect_factors(self, data: Dict[str, Any]) -> Set[str]:
        """Map raw lifestyle or record keys to known risk factors."""
        factors = set()
        if data.get("smoker") is True:
            factors.add("smoker")
        if data.get("sedentary") is True or 0 < _number(data.get("exercise_minutes_per_week")) < 150:
            factors.add("sedentary")
        if _number(data.get("bmi")) >= 30:
            factors.add("obesity")
        if _number(data.get("alcohol_units_per_week")) > 14:
            factors.add("heavy_drinking")
        if data.get("high_sugar_diet") is True:
            factors.add("high_sugar_diet")
        return factors

    def _affected_conditions(self, factors: Set[str]) -> List[str]:
        touched = {c for factor in factors for c in self.FACTOR_WEIGHTS[factor]}
        if not touched:
            return list(self.DEFAULT_CONDITIONS)
        return [c for c in self.BASE_RISK if c in touched]

    def _risk(self, condition: str, factors: Set[str]) -> float:
        added = sum(self.FACTOR_WEIGHTS[f].get(condition, 0.0) for f in factors)
        return min(self.BASE_RISK[condition] + added, self.MAX_PCT)

    def _prediction(
        self, condition: str, factors: Set[str], known: bool, citations: List[str]
    ) -> Dict[str, Any]:
        contributing = sorted(f for f in factors if condition in self.FACTOR_WEIGHTS[f])
        return {
            "condition": condition,
            "years": self.HORIZON_YEARS,
            "probability_pct": self._risk(condition, factors) if known else -1,
            "rationale": (
                f"Contributing factors: {', '.join(contributing)}." if contributing
                else "Population base rate."
            ),
            "preventable": bool(contributing),
            "interventions": [self.INTERVENTIONS[f] for f in contributing],
            "citations": list(citations),
        }

    def _delta(self, condition: str, baseline_pct: float, projection_pct: float) -> Dict[str, Any]:
        unknown = baseline_pct == -1 or projection_pct == -1
        return {
            "condition": condition,
            "baseline_pct": baseline_pct,
            "projection_pct": projection_pct,
            "delta_pct": -1 if unknown else round(projection_pct - baseline_pct, 1),
        }

    def _summary(self, lifestyle_factors: Set[str], known: bool) -> str:
        if not known:
            return "Not enough information to estimate risk."
        if not lifestyle_factors:
            return "The proposed lifestyle adds no recognized risk factors."
        return f"The proposed lifestyle raises risk through: {', '.join(sorted(lifestyle_factors))}."
