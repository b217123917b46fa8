import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from arovia.domain import (
    IAnalysisService,
    IPredictionService,
    AnalysisOptions,
    AnalysisOutcome,
    PredictionRequest,
)
from arovia.domain.errors import AnalysisError, InvalidModelOutput, MissingInput
from arovia.infrastructure.config import Settings
from arovia.infrastructure.services.response_normalizer import AnalysisNormalizer
from arovia.infrastructure.services.retry import Backoff, RetryPolicy, RetryState, with_retries
from arovia.domain.sanitizer import input_hash, sanitize_payload, serialize_payload


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalyzerConfig:
    """Defaults for every analyze call, fixed at construction."""
    model: str
    temperature: float = 0.0
    max_tokens: int = 1200
    health_databases: List[str] = field(default_factory=lambda: ["NHANES", "PubMed", "WHO", "ADA", "AHA"])
    retry_policy: RetryPolicy = RetryPolicy()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalyzerConfig":
        return cls(
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            health_databases=list(settings.health_databases),
            retry_policy=RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay_seconds=settings.retry_base_delay_seconds,
                backoff=Backoff(settings.retry_backoff),
            ),
        )


class AnalysisService(IAnalysisService):
    """
    Sanitizes a merged payload, asks the prediction service for a risk
    document with retries, and normalizes the answer to the current shape.
    """

    def __init__(
        self,
        prediction_service: IPredictionService,
        config: AnalyzerConfig,
        normalizer: Optional[AnalysisNormalizer] = None,
        sleep=asyncio.sleep,
    ):
        self._prediction_service = prediction_service
        self._config = config
        self._normalizer = normalizer or AnalysisNormalizer()
        self._sleep = sleep

    @property
    def config(self) -> AnalyzerConfig:
        return self._config

    async def analyze(
        self,
        user_id: str,
        payload: Any,
        health_databases: Optional[List[str]] = None,
        options: Optional[AnalysisOptions] = None,
    ) -> AnalysisOutcome:
        if payload is None:
            raise MissingInput("payload is required")

        sanitized = sanitize_payload(payload)
        request = self._build_request(sanitized, health_databases, options)
        ihash = input_hash(serialize_payload(sanitized))

        state = RetryState()
        try:
            raw = await with_retries(
                lambda: self._prediction_service.generate(request),
                self._config.retry_policy,
                state=state,
                sleep=self._sleep,
                label=f"prediction for user {user_id}",
            )
        except AnalysisError as e:
            logger.error(f"User {user_id}: prediction failed after {state.attempts} attempt(s): {e}")
            raise

        try:
            normalized = self._normalizer.normalize_text(raw, user_id=user_id)
        except InvalidModelOutput as e:
            logger.error(
                f"User {user_id}: invalid model output after {state.attempts} attempt(s): "
                f"{e.errors}; raw={e.raw!r}"
            )
            raise
        projection = normalized.result.projection
        logger.info(
            f"User {user_id}: analysis ok - model={normalized.result.model_version}, "
            f"shape={normalized.shape.value}, "
            f"projection_predictions={len(projection.predictions) if projection else 0}, "
            f"attempts={state.attempts}"
        )

        return AnalysisOutcome(
            result=normalized.result,
            shape=normalized.shape,
            input_hash=ihash,
            attempts=state.attempts,
        )

    def _build_request(
        self,
        sanitized: dict,
        health_databases: Optional[List[str]],
        options: Optional[AnalysisOptions],
    ) -> PredictionRequest:
        options = options or AnalysisOptions()
        return PredictionRequest(
            payload=sanitized,
            health_databases=list(health_databases or self._config.health_databases),
            model=options.model or self._config.model,
            temperature=options.temperature if options.temperature is not None else self._config.temperature,
            max_tokens=options.max_tokens or self._config.max_tokens,
        )
