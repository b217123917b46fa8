from typing import Generator, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from arovia.application import (
    AnalyzeRecordUseCase,
    BatchAnalyzeUseCase,
    UploadRecordUseCase,
    ListRecordsUseCase,
    GetPreventionPayloadUseCase,
    LoginUseCase,
    VerifyTokenUseCase,
)
from arovia.container import Container
from arovia.domain import AuthenticatedUser, AuthenticationError
from arovia.infrastructure.config import Settings


_container: Container | None = None
_bearer = HTTPBearer(auto_error=False)


def set_container(container: Container) -> None:
    """Set the global container for dependency injection."""
    global _container
    _container = container


def get_container() -> Container:
    """Get the global container."""
    if _container is None:
        raise RuntimeError("Container not initialized. Call set_container() first.")
    return _container


def get_app_settings() -> Generator[Settings, None, None]:
    """Dependency provider for the container's Settings."""
    container = get_container()
    yield container.settings


def get_analyze_use_case() -> Generator[AnalyzeRecordUseCase, None, None]:
    """Dependency provider for AnalyzeRecordUseCase."""
    container = get_container()
    yield container.analyze_record_use_case


def get_batch_analyze_use_case() -> Generator[BatchAnalyzeUseCase, None, None]:
    """Dependency provider for BatchAnalyzeUseCase."""
    container = get_container()
    yield container.batch_analyze_use_case


def get_upload_record_use_case() -> Generator[UploadRecordUseCase, None, None]:
    """Dependency provider for UploadRecordUseCase."""
    container = get_container()
    yield container.upload_record_use_case


def get_list_records_use_case() -> Generator[ListRecordsUseCase, None, None]:
    """Dependency provider for ListRecordsUseCase."""
    container = get_container()
    yield container.list_records_use_case


def get_prevention_use_case() -> Generator[GetPreventionPayloadUseCase, None, None]:
    """Dependency provider for GetPreventionPayloadUseCase."""
    container = get_container()
    yield container.get_prevention_payload_use_case


def get_login_use_case() -> Generator[LoginUseCase, None, None]:
    """Dependency provider for LoginUseCase."""
    container = get_container()
    yield container.login_use_case


def get_verify_token_use_case() -> Generator[VerifyTokenUseCase, None, None]:
    """Dependency provider for VerifyTokenUseCase."""
    container = get_container()
    yield container.verify_token_use_case


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    use_case: VerifyTokenUseCase = Depends(get_verify_token_use_case),
) -> AuthenticatedUser:
    """Resolve the bearer token and record the subject for rate limiting."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="missing token")
    try:
        user = use_case.execute(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    request.state.subject_id = user.user_id
    return user
