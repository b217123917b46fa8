from .llm_service import IPredictionService
from .analysis_service import IAnalysisService
from .record_repository import IHealthRecordRepository
from .user_repository import IUserRepository
from .token_service import ITokenService

__all__ = [
    "IPredictionService",
    "IAnalysisService",
    "IHealthRecordRepository",
    "IUserRepository",
    "ITokenService",
]
