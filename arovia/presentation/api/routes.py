import logging
from typing import List, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request

from arovia.presentation.schemas import (
    LoginRequestDTO,
    TokenResponseDTO,
    UploadRecordDTO,
    UploadRecordResponseDTO,
    RecordDTO,
    AnalyzeRequestDTO,
    AnalyzeResponseDTO,
    BatchAnalyzeRequestDTO,
    BatchAnalyzeResponseDTO,
    PreventionResponseDTO,
    HealthStatusDTO,
)
from arovia.application import (
    AnalyzeRequest,
    AnalyzeRecordResult,
    AnalyzeRecordUseCase,
    BatchAnalyzeUseCase,
    UploadRecordUseCase,
    ListRecordsUseCase,
    GetPreventionPayloadUseCase,
    LoginUseCase,
)
from arovia.domain import (
    AuthenticatedUser,
    AnalysisError,
    AuthenticationError,
    InvalidModelOutput,
    MissingInput,
    RateLimited,
    UpstreamError,
)
from arovia.presentation.dependencies import (
    get_analyze_use_case,
    get_batch_analyze_use_case,
    get_upload_record_use_case,
    get_list_records_use_case,
    get_prevention_use_case,
    get_login_use_case,
    get_current_user,
    get_app_settings,
)
from arovia.infrastructure.config import Settings
from arovia.presentation.rate_limit import limiter, current_rate_limit


logger = logging.getLogger(__name__)

router = APIRouter()


def _raise_http_error(error: AnalysisError) -> NoReturn:
    """Translate an analysis failure into the matching HTTP error."""
    if isinstance(error, MissingInput):
        raise HTTPException(status_code=400, detail=str(error))
    if isinstance(error, RateLimited):
        raise HTTPException(status_code=503, detail=str(error))
    if isinstance(error, InvalidModelOutput):
        raise HTTPException(status_code=502, detail="Invalid analysis returned from model")
    if isinstance(error, UpstreamError):
        raise HTTPException(status_code=502, detail=str(error))
    raise HTTPException(status_code=500, detail=str(error))


def _to_request(dto: AnalyzeRequestDTO) -> AnalyzeRequest:
    return AnalyzeRequest(
        user_id=dto.user_id,
        lifestyle=dto.lifestyle,
        consent_id=dto.consent_id,
        health_databases=dto.health_databases,
    )


def _to_response(result: AnalyzeRecordResult) -> AnalyzeResponseDTO:
    return AnalyzeResponseDTO(
        id=result.record_id,
        analysis=result.result.to_dict(),
        source_shape=result.shape.value,
        input_hash=result.input_hash,
        attempts=result.attempts,
    )


@router.get("/", response_model=HealthStatusDTO)
def root() -> HealthStatusDTO:
    """Health check endpoint."""
    return HealthStatusDTO(message="Arovia API running")


@router.post("/api/auth/login", response_model=TokenResponseDTO)
def login(
    credentials: LoginRequestDTO,
    use_case: LoginUseCase = Depends(get_login_use_case),
) -> TokenResponseDTO:
    """Exchange username and password for a bearer token."""
    try:
        token = use_case.execute(credentials.username, credentials.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return TokenResponseDTO(token=token)


@router.post("/api/health", response_model=UploadRecordResponseDTO)
def upload_record(
    upload: UploadRecordDTO,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: UploadRecordUseCase = Depends(get_upload_record_use_case),
) -> UploadRecordResponseDTO:
    """Store a raw health record for a user."""
    try:
        record = use_case.execute(upload.user_id, upload.payload, upload.source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return UploadRecordResponseDTO(id=record.record_id)


@router.get("/api/health/{user_id}", response_model=List[RecordDTO])
def list_records(
    user_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: ListRecordsUseCase = Depends(get_list_records_use_case),
) -> List[RecordDTO]:
    """List a user's most recent records, newest first."""
    return [
        RecordDTO(
            id=record.record_id,
            user_id=record.user_id,
            source=record.source,
            payload=record.payload,
            meta=record.meta,
            created_at=record.created_at.isoformat(),
        )
        for record in use_case.execute(user_id)
    ]


@router.post("/api/analyze", response_model=AnalyzeResponseDTO)
@limiter.limit(current_rate_limit)
async def analyze(
    request: Request,
    body: AnalyzeRequestDTO,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: AnalyzeRecordUseCase = Depends(get_analyze_use_case),
) -> AnalyzeResponseDTO:
    """Predict a user's health risks from their recent records and a proposed lifestyle."""
    try:
        result = await use_case.execute(_to_request(body))
    except AnalysisError as e:
        logger.error(f"Analyze failed for user {body.user_id}: {e}")
        _raise_http_error(e)
    return _to_response(result)


@router.post("/api/analyze/batch", response_model=BatchAnalyzeResponseDTO)
@limiter.limit(current_rate_limit)
async def analyze_batch(
    request: Request,
    body: BatchAnalyzeRequestDTO,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: BatchAnalyzeUseCase = Depends(get_batch_analyze_use_case),
    settings: Settings = Depends(get_app_settings),
) -> BatchAnalyzeResponseDTO:
    """Analyze several requests in throttled groups; failures are reported per item."""
    if len(body.requests) > settings.batch_max_items:
        raise HTTPException(
            status_code=422,
            detail=f"A batch may hold at most {settings.batch_max_items} requests",
        )
    batch_result = await use_case.execute([_to_request(dto) for dto in body.requests])
    metrics = batch_result["metrics"]

    return BatchAnalyzeResponseDTO(
        processed=metrics["processed"],
        failed=metrics["failed"],
        groups=metrics["groups"],
        legacy_upgrades=metrics["legacy_upgrades"],
        total_time_seconds=metrics["total_time_seconds"],
        average_time_per_request=metrics["average_time_per_request"],
        results=[_to_response(r) for r in batch_result["results"]],
        errors=batch_result["errors"],
    )


@router.get("/api/prevention/{user_id}", response_model=PreventionResponseDTO)
def get_prevention(
    user_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    use_case: GetPreventionPayloadUseCase = Depends(get_prevention_use_case),
) -> PreventionResponseDTO:
    """Get the latest stored analysis of a user, or null when there is none."""
    return PreventionResponseDTO(user_id=user_id, analysis=use_case.execute(user_id))
