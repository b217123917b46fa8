import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from arovia.domain import (
    IAnalysisService,
    IHealthRecordRepository,
    AnalysisError,
    AnalysisOptions,
    AnalysisResult,
    HealthRecord,
    RecordSource,
    ResponseShape,
)
from arovia.domain.sanitizer import sanitize_payload


logger = logging.getLogger(__name__)


@dataclass
class AnalyzeRequest:
    """Input of one analyze call."""
    user_id: str
    lifestyle: Dict[str, Any] = field(default_factory=dict)
    consent_id: Optional[str] = None
    health_databases: Optional[List[str]] = None
    options: Optional[AnalysisOptions] = None


@dataclass
class AnalyzeRecordResult:
    """Result of the analyze record use case."""
    result: AnalysisResult
    shape: ResponseShape
    record_id: str
    input_hash: str
    attempts: int
    baseline_record_count: int


class AnalyzeRecordUseCase:
    """Use case for predicting a user's health risks from their stored records."""

    def __init__(
        self,
        analysis_service: IAnalysisService,
        record_repository: IHealthRecordRepository,
        history_limit: int = 10,
    ):
        self._analysis_service = analysis_service
        self._record_repository = record_repository
        self._history_limit = history_limit

    async def execute(self, request: AnalyzeRequest) -> AnalyzeRecordResult:
        """
        Analyze a user's recent records under a proposed lifestyle.

        Flow:
        1. Load the most recent uploaded records for the user
        2. Merge them, sanitized, with the proposed lifestyle
        3. Analyze (sanitize, call the model with retries, normalize)
        4. Persist the result as an immutable analysis record

        Concurrent calls for the same user are not serialized; each one
        produces and stores its own analysis record.
        """
        history = self._recent_uploads(request.user_id)
        merged = {
            "baseline_records": [
                {
                    "source": record.source,
                    "payload": sanitize_payload(record.payload),
                    "created_at": record.created_at.isoformat(),
                }
                for record in history
            ],
            "lifestyle": dict(request.lifestyle),
        }

        outcome = await self._analysis_service.analyze(
            request.user_id,
            merged,
            health_databases=request.health_databases,
            options=request.options,
        )

        stored = self._record_repository.append(
            HealthRecord(
                user_id=request.user_id,
                source=RecordSource.ANALYSIS.value,
                payload=outcome.result.to_dict(),
                meta={
                    "model_version": outcome.result.model_version,
                    "consent_id": request.consent_id,
                    "input_hash": outcome.input_hash,
                    "source_shape": outcome.shape.value,
                    "attempts": outcome.attempts,
                },
            )
        )

        logger.info(
            f"User {request.user_id}: analysis {stored.record_id} stored "
            f"({len(history)} baseline records, shape={outcome.shape.value})"
        )

        return AnalyzeRecordResult(
            result=outcome.result,
            shape=outcome.shape,
            record_id=stored.record_id,
            input_hash=outcome.input_hash,
            attempts=outcome.attempts,
            baseline_record_count=len(history),
        )

    def _recent_uploads(self, user_id: str) -> List[HealthRecord]:
        """Newest uploaded records; earlier analyses are not fed back to the model."""
        uploads = [
            record for record in self._record_repository.find_by_user(user_id)
            if not record.is_analysis()
        ]
        return uploads[:self._history_limit]


class BatchAnalyzeUseCase:
    """
    Use case for analyzing several requests with a fixed-window throttle.

    Requests run concurrently in groups of ``batch_size``; after each group
    (except the last) the batch pauses for ``pause_seconds``.
    """

    def __init__(
        self,
        analyze_use_case: AnalyzeRecordUseCase,
        batch_size: int = 5,
        pause_seconds: float = 1.0,
        sleep=asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self._analyze_use_case = analyze_use_case
        self._batch_size = batch_size
        self._pause_seconds = pause_seconds
        self._sleep = sleep

    async def execute(self, requests: List[AnalyzeRequest]) -> dict:
        """
        Process multiple analyze requests with timing and metrics.

        Returns:
            Dictionary with results, per-request errors and metrics.
        """
        start_time = time.time()
        results: List[AnalyzeRecordResult] = []
        errors = []
        groups = [
            requests[i:i + self._batch_size]
            for i in range(0, len(requests), self._batch_size)
        ]

        for group_index, group in enumerate(groups):
            outcomes = await asyncio.gather(
                *(self._analyze_use_case.execute(request) for request in group),
                return_exceptions=True,
            )
            for offset, (request, outcome) in enumerate(zip(group, outcomes)):
                if isinstance(outcome, AnalysisError):
                    logger.error(f"Error analyzing batch item for user {request.user_id}: {outcome}")
                    errors.append({
                        "index": group_index * self._batch_size + offset,
                        "user_id": request.user_id,
                        "error": str(outcome),
                        "type": type(outcome).__name__,
                    })
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)

            if group_index < len(groups) - 1:
                logger.info(
                    f"Batch group {group_index + 1}/{len(groups)} done, "
                    f"pausing {self._pause_seconds:.2f}s"
                )
                await self._sleep(self._pause_seconds)

        total_time = time.time() - start_time

        return {
            "results": results,
            "errors": errors,
            "metrics": {
                "total_requests": len(requests),
                "processed": len(results),
                "failed": len(errors),
                "groups": len(groups),
                "legacy_upgrades": sum(1 for r in results if r.shape is not ResponseShape.CURRENT),
                "total_time_seconds": round(total_time, 2),
                "average_time_per_request": round(total_time / max(len(results), 1), 3),
            }
        }
