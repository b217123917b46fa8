import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordSource(str, Enum):
    """Well-known record source labels."""
    ABHA = "abha"
    APP = "app"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class HealthRecord:
    """Domain entity representing one stored upload or analysis result."""
    user_id: str
    payload: Dict[str, Any]
    source: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)

    def is_analysis(self) -> bool:
        """Check if this record holds an analysis result."""
        return self.source == RecordSource.ANALYSIS.value


@dataclass
class User:
    """Domain entity representing an API user."""
    username: str
    password_hash: str
    display_name: Optional[str] = None
    user_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class AuthenticatedUser:
    """Identity extracted from a verified bearer token."""
    user_id: str
    username: str
