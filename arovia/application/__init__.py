from .use_cases import (
    AnalyzeRequest,
    AnalyzeRecordUseCase,
    AnalyzeRecordResult,
    BatchAnalyzeUseCase,
    UploadRecordUseCase,
    ListRecordsUseCase,
    GetPreventionPayloadUseCase,
    LoginUseCase,
    VerifyTokenUseCase,
)

__all__ = [
    "AnalyzeRequest",
    "AnalyzeRecordUseCase",
    "AnalyzeRecordResult",
    "BatchAnalyzeUseCase",
    "UploadRecordUseCase",
    "ListRecordsUseCase",
    "GetPreventionPayloadUseCase",
    "LoginUseCase",
    "VerifyTokenUseCase",
]
