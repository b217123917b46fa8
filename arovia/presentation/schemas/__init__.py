from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


class LoginRequestDTO(BaseModel):
    """Request DTO for login."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenResponseDTO(BaseModel):
    """Response DTO carrying a bearer token."""
    token: str
    token_type: str = "bearer"


class UploadRecordDTO(BaseModel):
    """Request DTO for uploading a health record."""
    user_id: str = Field(min_length=1)
    source: Optional[str] = None
    payload: Dict[str, Any]


class UploadRecordResponseDTO(BaseModel):
    """Response DTO for an uploaded record."""
    id: str


class RecordDTO(BaseModel):
    """Data transfer object for stored health records."""
    id: str
    user_id: str
    source: Optional[str] = None
    payload: Dict[str, Any]
    meta: Optional[Dict[str, Any]] = None
    created_at: str


class AnalyzeRequestDTO(BaseModel):
    """Request DTO for analyze endpoint."""
    user_id: str = Field(min_length=1)
    lifestyle: Dict[str, Any] = Field(default_factory=dict)
    consent_id: Optional[str] = None
    health_databases: Optional[List[str]] = None


class AnalyzeResponseDTO(BaseModel):
    """Response DTO for analyze endpoint."""
    id: str
    analysis: Dict[str, Any]
    source_shape: str
    input_hash: str
    attempts: int


class BatchAnalyzeRequestDTO(BaseModel):
    """Request DTO for batch analysis."""
    requests: List[AnalyzeRequestDTO] = Field(min_length=1)


class BatchAnalyzeResponseDTO(BaseModel):
    """Response DTO for batch analysis."""
    processed: int
    failed: int
    groups: int
    legacy_upgrades: int
    total_time_seconds: float
    average_time_per_request: float
    results: List[AnalyzeResponseDTO]
    errors: List[Dict[str, Any]]


class PreventionResponseDTO(BaseModel):
    """Response DTO for the latest stored analysis."""
    user_id: str
    analysis: Optional[Dict[str, Any]] = None


class HealthStatusDTO(BaseModel):
    """DTO for health status message."""
    message: str
