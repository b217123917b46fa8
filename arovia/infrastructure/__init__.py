from .config import Settings, get_settings
from .services import (
    OpenAIPredictionService,
    MockPredictionService,
    AnalysisService,
    AnalyzerConfig,
    JWTTokenService,
)
from .persistence import InMemoryHealthRecordRepository, InMemoryUserRepository

__all__ = [
    "Settings",
    "get_settings",
    "OpenAIPredictionService",
    "MockPredictionService",
    "AnalysisService",
    "AnalyzerConfig",
    "JWTTokenService",
    "InMemoryHealthRecordRepository",
    "InMemoryUserRepository",
]
