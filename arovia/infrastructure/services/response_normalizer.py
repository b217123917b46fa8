"""
Normalization of model output into the current AnalysisResult shape.

The model is asked for the current (baseline/projection/deltas) shape, but
older prompts and some models still answer with a flat ``predictions`` list.
Accepted shapes are tried in priority order; the first that validates wins
and is converted to the current shape. A document that matches none of them
raises InvalidModelOutput with the raw text attached.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, List, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from arovia.domain.entities import (
    AnalysisResult,
    Delta,
    Explainability,
    FeatureImpact,
    NormalizedAnalysis,
    Prediction,
    PredictionSet,
    ResponseShape,
    UNKNOWN_PCT,
)
from arovia.domain.errors import InvalidModelOutput


logger = logging.getLogger(__name__)

LEGACY_MODEL_VERSION = "unknown-legacy"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_pct(value: float) -> float:
    """Round a probability percentage to one decimal place, halves away from zero."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


# =============================================================================
# Accepted response shapes
# =============================================================================

class PredictionSchema(BaseModel):
    condition: str
    years: int = Field(ge=0)
    probability_pct: float
    rationale: Optional[str] = None
    preventable: Optional[bool] = None
    interventions: Optional[List[str]] = None
    citations: Optional[List[str]] = None


class PredictionSetSchema(BaseModel):
    predictions: List[PredictionSchema]


class DeltaSchema(BaseModel):
    condition: str
    baseline_pct: float
    projection_pct: float
    delta_pct: float


class FeatureImpactSchema(BaseModel):
    feature: str
    impact: float


class ExplainabilitySchema(BaseModel):
    top_features: List[FeatureImpactSchema]


class CurrentAnalysisSchema(BaseModel):
    """Versioned baseline/projection shape. Metadata is required."""
    model_config = ConfigDict(protected_namespaces=())

    model_version: str
    generated_on: str
    summary: Optional[str] = None
    baseline: Optional[PredictionSetSchema] = None
    projection: Optional[PredictionSetSchema] = None
    deltas: Optional[List[DeltaSchema]] = None
    explainability: Optional[ExplainabilitySchema] = None

    @model_validator(mode="before")
    @classmethod
    def _reject_flat_predictions(cls, data: Any) -> Any:
        # A stray flat list next to baseline/projection is ignored like any extra key.
        if (
            isinstance(data, dict)
            and "predictions" in data
            and "baseline" not in data
            and "projection" not in data
        ):
            raise ValueError("a flat 'predictions' list belongs to the legacy shape")
        return data


class LegacyAnalysisSchema(BaseModel):
    """Flat predictions list with optional metadata and free-form explainability."""
    model_config = ConfigDict(protected_namespaces=())

    model_version: Optional[str] = None
    generated_on: Optional[str] = None
    summary: Optional[str] = None
    predictions: List[PredictionSchema]
    explainability: Any = None


# =============================================================================
# Conversion to domain entities
# =============================================================================

def _prediction(schema: PredictionSchema) -> Prediction:
    data = schema.model_dump()
    data["probability_pct"] = round_pct(data["probability_pct"])
    return Prediction(**data)


def _prediction_set(schema: Optional[PredictionSetSchema]) -> Optional[PredictionSet]:
    if schema is None:
        return None
    return PredictionSet(predictions=[_prediction(p) for p in schema.predictions])


def _delta(schema: DeltaSchema) -> Delta:
    return Delta(
        condition=schema.condition,
        baseline_pct=round_pct(schema.baseline_pct),
        projection_pct=round_pct(schema.projection_pct),
        delta_pct=round_pct(schema.delta_pct),
    )


def _explainability(schema: Optional[ExplainabilitySchema]) -> Optional[Explainability]:
    if schema is None:
        return None
    return Explainability(
        top_features=[FeatureImpact(feature=f.feature, impact=f.impact) for f in schema.top_features]
    )


def _from_current(document: CurrentAnalysisSchema, clock: Clock) -> AnalysisResult:
    return AnalysisResult(
        model_version=document.model_version,
        generated_on=document.generated_on,
        summary=document.summary,
        baseline=_prediction_set(document.baseline),
        projection=_prediction_set(document.projection),
        deltas=[_delta(d) for d in document.deltas] if document.deltas is not None else None,
        explainability=_explainability(document.explainability),
    )


def _legacy_explainability(raw: Any) -> Optional[Explainability]:
    if raw is None:
        return None
    try:
        return _explainability(ExplainabilitySchema.model_validate(raw))
    except ValidationError:
        logger.debug("Dropping free-form legacy explainability that has no top_features list")
        return None


def _upgrade_legacy(document: LegacyAnalysisSchema, clock: Clock) -> AnalysisResult:
    """
    Map a legacy document onto the current shape.

    Baseline risk was never computed by legacy prompts, so the baseline set is
    empty and every delta carries the unknown sentinel for baseline_pct and
    delta_pct.
    """
    predictions = [_prediction(p) for p in document.predictions]
    return AnalysisResult(
        model_version=document.model_version or LEGACY_MODEL_VERSION,
        generated_on=document.generated_on or clock().isoformat(),
        summary=document.summary or "",
        baseline=PredictionSet(predictions=[]),
        projection=PredictionSet(predictions=predictions),
        deltas=[
            Delta(
                condition=p.condition,
                baseline_pct=UNKNOWN_PCT,
                projection_pct=p.probability_pct,
                delta_pct=UNKNOWN_PCT,
            )
            for p in predictions
        ],
        explainability=_legacy_explainability(document.explainability),
    )


@dataclass(frozen=True)
class ShapeAdapter:
    """One entry of the validation chain."""
    shape: ResponseShape
    schema: Type[BaseModel]
    convert: Callable[[Any, Clock], AnalysisResult]


SHAPE_CHAIN: Sequence[ShapeAdapter] = (
    ShapeAdapter(ResponseShape.CURRENT, CurrentAnalysisSchema, _from_current),
    ShapeAdapter(ResponseShape.LEGACY, LegacyAnalysisSchema, _upgrade_legacy),
)


# =============================================================================
# Parsing and normalization
# =============================================================================

_decoder = json.JSONDecoder()


def extract_json_document(text: Any) -> Any:
    """
    Parse model output as JSON.

    Accepts bare JSON, or prose with an embedded object, in which case only
    the first top-level ``{...}`` object is parsed.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidModelOutput("Model returned no textual output", raw=text)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Model output is not bare JSON, looking for an embedded object")

    start = text.find("{")
    if start == -1:
        raise InvalidModelOutput(
            "Failed to parse JSON from model output and no JSON object found", raw=text
        )
    try:
        document, _ = _decoder.raw_decode(text, start)
    except json.JSONDecodeError as e:
        raise InvalidModelOutput(
            f"Failed to parse the JSON object extracted from model output: {e}", raw=text
        ) from e
    return document


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    )


class AnalysisNormalizer:
    """Resolves model output to the current AnalysisResult shape."""

    def __init__(
        self,
        chain: Sequence[ShapeAdapter] = SHAPE_CHAIN,
        clock: Clock = _utcnow,
    ):
        self._chain = chain
        self._clock = clock

    def normalize_text(self, raw_text: Any, user_id: Optional[str] = None) -> NormalizedAnalysis:
        """Parse raw model text and normalize the document it contains."""
        try:
            document = extract_json_document(raw_text)
        except InvalidModelOutput as e:
            logger.error(f"Unparseable model output for user {user_id}: {e}; raw={raw_text!r}")
            raise
        return self.normalize(document, raw=raw_text, user_id=user_id)

    def normalize(
        self,
        document: Any,
        raw: Any = None,
        user_id: Optional[str] = None,
    ) -> NormalizedAnalysis:
        """Validate a parsed document against each accepted shape in order."""
        errors = []
        for adapter in self._chain:
            try:
                parsed = adapter.schema.model_validate(document)
            except ValidationError as e:
                errors.append(f"{adapter.shape.value}: {_describe(e)}")
                continue

            result = adapter.convert(parsed, self._clock)
            if adapter.shape is not ResponseShape.CURRENT:
                logger.warning(
                    f"User {user_id}: {adapter.shape.value} analysis returned, "
                    f"converted to current shape"
                )
            return NormalizedAnalysis(result=result, shape=adapter.shape)

        raw = raw if raw is not None else document
        logger.error(f"Invalid analysis schema from model for user {user_id}: {errors}; raw={raw!r}")
        raise InvalidModelOutput("Invalid analysis returned from model", raw=raw, errors=errors)
