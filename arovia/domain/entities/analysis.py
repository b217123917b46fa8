from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


UNKNOWN_PCT = -1.0  # "unknown, not fabricated" marker for probability fields
NO_CITATION = "no citation available"


def _drop_none(items: List[tuple]) -> Dict[str, Any]:
    return {key: value for key, value in items if value is not None}


@dataclass
class Prediction:
    """One forecasted condition."""
    condition: str
    years: int
    probability_pct: float
    rationale: Optional[str] = None
    preventable: Optional[bool] = None
    interventions: Optional[List[str]] = None
    citations: Optional[List[str]] = None

    @property
    def is_unknown(self) -> bool:
        return self.probability_pct == UNKNOWN_PCT


@dataclass
class PredictionSet:
    """A risk profile, either baseline or projection."""
    predictions: List[Prediction] = field(default_factory=list)


@dataclass
class Delta:
    """Signed change between projection and baseline risk for one condition."""
    condition: str
    baseline_pct: float
    projection_pct: float
    delta_pct: float


@dataclass
class FeatureImpact:
    """Contribution of one input feature; positive impact increases risk."""
    feature: str
    impact: float


@dataclass
class Explainability:
    top_features: List[FeatureImpact] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Domain entity representing a risk analysis in the current shape."""
    model_version: str
    generated_on: str
    summary: Optional[str] = None
    baseline: Optional[PredictionSet] = None
    projection: Optional[PredictionSet] = None
    deltas: Optional[List[Delta]] = None
    explainability: Optional[Explainability] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON document shape, omitting absent fields."""
        return asdict(self, dict_factory=_drop_none)


class ResponseShape(str, Enum):
    """Response shapes accepted from the model, in validation priority order."""
    CURRENT = "current"
    LEGACY = "legacy"


@dataclass
class NormalizedAnalysis:
    """An analysis tagged with the shape it was read from."""
    result: AnalysisResult
    shape: ResponseShape

    @property
    def upgraded(self) -> bool:
        return self.shape is not ResponseShape.CURRENT


@dataclass
class AnalysisOutcome:
    """What the analysis service hands back for one analyze call."""
    result: AnalysisResult
    shape: ResponseShape
    input_hash: str
    attempts: int


@dataclass
class AnalysisOptions:
    """Per-request overrides of the analyzer defaults."""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class PredictionRequest:
    """Everything the external prediction service needs for one call."""
    payload: Dict[str, Any]
    health_databases: List[str]
    model: str
    temperature: float
    max_tokens: int
