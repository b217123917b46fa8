from .entities import (
    HealthRecord,
    User,
    AuthenticatedUser,
    RecordSource,
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
)
from .errors import (
    AnalysisError,
    MissingInput,
    UpstreamError,
    TransientUpstreamError,
    RateLimited,
    NonTransientUpstreamError,
    InvalidModelOutput,
    AuthenticationError,
)
from .interfaces import (
    IPredictionService,
    IAnalysisService,
    IHealthRecordRepository,
    IUserRepository,
    ITokenService,
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
    "AnalysisError",
    "MissingInput",
    "UpstreamError",
    "TransientUpstreamError",
    "RateLimited",
    "NonTransientUpstreamError",
    "InvalidModelOutput",
    "AuthenticationError",
    "IPredictionService",
    "IAnalysisService",
    "IHealthRecordRepository",
    "IUserRepository",
    "ITokenService",
]
