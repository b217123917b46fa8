from .api import router
from .schemas import (
    LoginRequestDTO,
    TokenResponseDTO,
    UploadRecordDTO,
    RecordDTO,
    AnalyzeRequestDTO,
    AnalyzeResponseDTO,
    BatchAnalyzeRequestDTO,
    BatchAnalyzeResponseDTO,
    PreventionResponseDTO,
    HealthStatusDTO,
)
from .dependencies import set_container, get_container
from .rate_limit import limiter, rate_limit_exceeded_handler

__all__ = [
    "router",
    "LoginRequestDTO",
    "TokenResponseDTO",
    "UploadRecordDTO",
    "RecordDTO",
    "AnalyzeRequestDTO",
    "AnalyzeResponseDTO",
    "BatchAnalyzeRequestDTO",
    "BatchAnalyzeResponseDTO",
    "PreventionResponseDTO",
    "HealthStatusDTO",
    "set_container",
    "get_container",
    "limiter",
    "rate_limit_exceeded_handler",
]
