import logging
from typing import Any, Dict, List, Optional

from arovia.domain import IHealthRecordRepository, HealthRecord, RecordSource


logger = logging.getLogger(__name__)


class UploadRecordUseCase:
    """Use case for storing a raw health record upload."""

    def __init__(self, record_repository: IHealthRecordRepository):
        self._record_repository = record_repository

    def execute(
        self,
        user_id: str,
        payload: Dict[str, Any],
        source: Optional[str] = None,
    ) -> HealthRecord:
        """
        Store an uploaded record.

        The "analysis" label is reserved for results written by the
        analyze use case.
        """
        if source == RecordSource.ANALYSIS.value:
            raise ValueError(f"source '{source}' is reserved for analysis results")

        record = self._record_repository.append(
            HealthRecord(user_id=user_id, source=source, payload=payload)
        )
        logger.info(f"User {user_id}: uploaded record {record.record_id}")
        return record


class ListRecordsUseCase:
    """Use case for listing a user's records."""

    def __init__(self, record_repository: IHealthRecordRepository, limit: int = 20):
        self._record_repository = record_repository
        self._limit = limit

    def execute(self, user_id: str) -> List[HealthRecord]:
        """Get the user's most recent records, newest first."""
        return self._record_repository.find_by_user(user_id, limit=self._limit)


class GetPreventionPayloadUseCase:
    """Use case for fetching the latest analysis of a user."""

    def __init__(self, record_repository: IHealthRecordRepository):
        self._record_repository = record_repository

    def execute(self, user_id: str) -> Optional[Dict[str, Any]]:
        record = self._record_repository.latest_by_source(user_id, RecordSource.ANALYSIS.value)
        return record.payload if record else None
