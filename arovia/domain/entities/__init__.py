from .record import (
    HealthRecord,
    User,
    AuthenticatedUser,
    RecordSource,
)
from .analysis import (
    Prediction,
    PredictionSet,
    Delta,
    FeatureImpact,
    Explainability,
    AnalysisResult,
    ResponseShape,
    NormalizedAnalysis,
    AnalysisOutcome,
    AnalysisOptions,
    PredictionRequest,
    UNKNOWN_PCT,
    NO_CITATION,
)

__all__ = [
    "HealthRecord",
    "User",
    "AuthenticatedUser",
    "RecordSource",
    "Prediction",
    "PredictionSet",
    "Delta",
    "FeatureImpact",
    "Explainability",
    "AnalysisResult",
    "ResponseShape",
    "NormalizedAnalysis",
    "AnalysisOutcome",
    "AnalysisOptions",
    "PredictionRequest",
    "UNKNOWN_PCT",
    "NO_CITATION",
]
