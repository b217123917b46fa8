from .llm_service import OpenAIPredictionService, MockPredictionService
from .analysis_service import AnalysisService, AnalyzerConfig
from .response_normalizer import AnalysisNormalizer, extract_json_document
from .retry import Backoff, RetryPolicy, RetryState, with_retries, is_transient
from .auth_service import JWTTokenService

__all__ = [
    "OpenAIPredictionService",
    "MockPredictionService",
    "AnalysisService",
    "AnalyzerConfig",
    "AnalysisNormalizer",
    "extract_json_document",
    "Backoff",
    "RetryPolicy",
    "RetryState",
    "with_retries",
    "is_transient",
    "JWTTokenService",
]
