from .analyze_record import AnalyzeRequest, AnalyzeRecordUseCase, AnalyzeRecordResult, BatchAnalyzeUseCase
from .manage_records import UploadRecordUseCase, ListRecordsUseCase, GetPreventionPayloadUseCase
from .authenticate import LoginUseCase, VerifyTokenUseCase

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
