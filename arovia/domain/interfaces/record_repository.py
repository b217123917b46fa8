from abc import ABC, abstractmethod
from typing import List, Optional
from arovia.domain.entities import HealthRecord


class IHealthRecordRepository(ABC):
    """Interface for the append-only health record store."""

    @abstractmethod
    def append(self, record: HealthRecord) -> HealthRecord:
        """Store a new record."""
        pass

    @abstractmethod
    def find_by_user(self, user_id: str, limit: Optional[int] = None) -> List[HealthRecord]:
        """Get a user's records, newest first."""
        pass

    @abstractmethod
    def latest_by_source(self, user_id: str, source: str) -> Optional[HealthRecord]:
        """Get the newest record of a user with the given source label."""
        pass
