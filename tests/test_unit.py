"""
Unit tests for Arovia health risk components.

These tests verify BEHAVIOR, not just execution. Where it is not obvious,
a test documents:
1. What scenario is being tested
2. What the expected behavior is
3. Why this behavior is correct

Run with: pytest tests/test_unit.py -v
"""
import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

# Import domain entities and errors
from arovia.domain import (
    IPredictionService,
    AnalysisOptions,
    HealthRecord,
    PredictionRequest,
    ResponseShape,
    User,
)
from arovia.domain.entities import NO_CITATION, UNKNOWN_PCT
from arovia.domain.errors import (
    AuthenticationError,
    InvalidModelOutput,
    MissingInput,
    NonTransientUpstreamError,
    RateLimited,
    TransientUpstreamError,
    UpstreamError,
)
from arovia.domain.sanitizer import input_hash, sanitize_payload, serialize_payload

# Import services
from arovia.infrastructure.config import Settings
from arovia.infrastructure.persistence import InMemoryHealthRecordRepository, InMemoryUserRepository
from arovia.infrastructure.services.analysis_service import AnalysisService, AnalyzerConfig
from arovia.infrastructure.services.auth_service import JWTTokenService
from arovia.infrastructure.services.llm_service import (
    MockPredictionService,
    OpenAIPredictionService,
    build_analysis_prompt,
)
from arovia.infrastructure.services.response_normalizer import (
    AnalysisNormalizer,
    extract_json_document,
    round_pct,
)
from arovia.infrastructure.services.retry import (
    Backoff,
    RetryPolicy,
    RetryState,
    is_transient,
    with_retries,
)

# Import use cases
from arovia.application.use_cases.analyze_record import (
    AnalyzeRecordUseCase,
    AnalyzeRequest,
    BatchAnalyzeUseCase,
)
from arovia.application.use_cases.authenticate import LoginUseCase
from arovia.application.use_cases.manage_records import (
    GetPreventionPayloadUseCase,
    ListRecordsUseCase,
    UploadRecordUseCase,
)


FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

CURRENT_DOCUMENT = {
    "model_version": "llama-v1",
    "generated_on": "2025-01-01T00:00:00Z",
    "summary": "Smoking raises lung risk.",
    "baseline": {"predictions": [
        {"condition": "COPD", "years": 10, "probability_pct": 3.04, "citations": ["WHO"]},
    ]},
    "projection": {"predictions": [
        {"condition": "COPD", "years": 10, "probability_pct": 18.06, "preventable": True,
         "interventions": ["Stop smoking"], "citations": ["WHO"]},
    ]},
    "deltas": [
        {"condition": "COPD", "baseline_pct": 3.04, "projection_pct": 18.06, "delta_pct": 15.02},
    ],
    "explainability": {"top_features": [{"feature": "smoker", "impact": 0.4}]},
}

LEGACY_DOCUMENT = {
    "predictions": [
        {"condition": "Type 2 diabetes", "years": 5, "probability_pct": 30},
        {"condition": "Hypertension", "years": 8, "probability_pct": 22.25},
    ],
    "explainability": "sugar intake matters most",
}


# =============================================================================
# FIXTURES AND FAKES
# =============================================================================

class ScriptedPredictionService(IPredictionService):
    """Returns (or raises) the queued outcomes in order and records every request."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def generate(self, request: PredictionRequest) -> str:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FailingForFlagPredictionService(IPredictionService):
    """Delegates to the mock service unless the lifestyle carries a 'fail' flag."""

    def __init__(self, settings):
        self._mock = MockPredictionService(settings)

    async def generate(self, request: PredictionRequest) -> str:
        if request.payload["lifestyle"].get("fail"):
            raise NonTransientUpstreamError("bad request", status_code=400)
        return await self._mock.generate(request)


class SleepRecorder:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings():
    """Create settings with test defaults."""
    return Settings(
        llm_api_key="test-key",
        llm_model="test-model",
        use_mock_llm=True,
        jwt_secret="unit-test-secret-with-at-least-32-bytes",
    )


@pytest.fixture
def config():
    return AnalyzerConfig(model="test-model", health_databases=["NHANES", "WHO"])


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def repository():
    return InMemoryHealthRecordRepository()


@pytest.fixture
def mock_service(settings):
    return MockPredictionService(settings)


def make_analysis_service(prediction_service, config, sleep):
    return AnalysisService(
        prediction_service,
        config,
        normalizer=AnalysisNormalizer(clock=lambda: FIXED_NOW),
        sleep=sleep,
    )


# =============================================================================
# SANITIZER UNIT TESTS
# =============================================================================

class TestSanitizer:
    """Tests for identifier removal before data leaves the service."""

    def test_direct_identifiers_are_removed(self):
        raw = {"name": "Asha", "email": "a@x.in", "phone": "+91 99999", "bmi": 31}

        sanitized = sanitize_payload(raw)

        assert sanitized == {"bmi": 31}

    def test_national_id_is_pseudonymized_to_last_six_characters(self):
        sanitized = sanitize_payload({"abha_id": "12345678901234"})

        assert sanitized["abha_id"] == "user_901234"

    def test_short_national_id_keeps_all_characters(self):
        assert sanitize_payload({"abha_id": "42"})["abha_id"] == "user_42"

    def test_empty_national_id_is_left_alone(self):
        assert sanitize_payload({"abha_id": ""})["abha_id"] == ""
        assert sanitize_payload({"abha_id": None})["abha_id"] is None

    def test_long_notes_are_truncated(self):
        sanitized = sanitize_payload({"notes": "x" * 1500})

        assert len(sanitized["notes"]) == 1000

    def test_non_string_notes_are_kept(self):
        assert sanitize_payload({"notes": ["a", "b"]})["notes"] == ["a", "b"]

    def test_input_is_not_modified(self):
        raw = {"name": "Asha", "abha_id": "12345678901234", "labs": {"hba1c": 6.1}}
        before = json.loads(json.dumps(raw))

        sanitized = sanitize_payload(raw)
        sanitized["labs"]["hba1c"] = 9.9

        assert raw == before

    def test_sanitizing_twice_equals_sanitizing_once(self):
        """
        SCENARIO: A payload is sanitized by the use case and again by the service
        EXPECTED: The second pass changes nothing
        REASONING: A pseudonym must not be re-pseudonymized into a different value,
                   otherwise the audit hash would depend on how often we sanitize
        """
        raw = {
            "name": "Asha",
            "abha_id": "12-3456-7890-1234",
            "notes": "n" * 2000,
            "smoker": True,
        }

        once = sanitize_payload(raw)

        assert sanitize_payload(once) == once

    @pytest.mark.parametrize("abha_id", ["1", "123456", "1234567", "12-3456-7890-1234", 98765432101234])
    def test_pseudonym_never_exceeds_six_character_suffix(self, abha_id):
        pseudonym = sanitize_payload({"abha_id": abha_id})["abha_id"]

        assert pseudonym.startswith("user_")
        assert len(pseudonym) <= len("user_") + 6

    def test_nested_identifiers_are_not_touched(self):
        """Sanitization is top level only."""
        raw = {"contact": {"email": "a@x.in"}}

        assert sanitize_payload(raw) == raw

    def test_input_hash_is_sha256_of_serialized_payload(self):
        serialized = serialize_payload({"b": 1, "a": 2})

        assert serialized == json.dumps({"a": 2, "b": 1}, indent=2)
        assert input_hash(serialized) == hashlib.sha256(serialized.encode("utf-8")).hexdigest()


# =============================================================================
# RETRY UNIT TESTS
# =============================================================================

class TestRetryPolicy:
    """Tests for backoff arithmetic and error classification."""

    def test_exponential_delays_double(self):
        policy = RetryPolicy(max_attempts=4, base_delay_seconds=1.0)

        assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_fixed_delays_are_constant(self):
        policy = RetryPolicy(base_delay_seconds=0.5, backoff=Backoff.FIXED)

        assert [policy.delay_for(i) for i in range(3)] == [0.5, 0.5, 0.5]

    def test_invalid_policy_is_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay_seconds=-1)

    @pytest.mark.parametrize("error,expected", [
        (UpstreamError("server", status_code=503), True),
        (UpstreamError("throttled", status_code=429), True),
        (RateLimited(), True),
        (TransientUpstreamError("network"), True),
        (ConnectionError("reset"), True),
        (UpstreamError("not found", status_code=404), False),
        (NonTransientUpstreamError("bad", status_code=400), False),
        (InvalidModelOutput("bad json"), False),
        (MissingInput("none"), False),
    ])
    def test_is_transient(self, error, expected):
        assert is_transient(error) is expected


class TestWithRetries:
    """Tests for the async retry loop."""

    def test_recovers_after_transient_failures(self, sleep):
        """
        SCENARIO: Two 503s, then success
        EXPECTED: Result returned after 3 attempts with 1s then 2s waits
        REASONING: Exponential backoff waits base * 2**i before retry i
        """
        service = ScriptedPredictionService(
            TransientUpstreamError("boom", status_code=503),
            TransientUpstreamError("boom", status_code=503),
            "ok",
        )
        state = RetryState()

        result = run(with_retries(lambda: service.generate(None), RetryPolicy(), sleep=sleep, state=state))

        assert result == "ok"
        assert state.attempts == 3
        assert sleep.delays == [1.0, 2.0]
        assert state.total_delay == 3.0

    def test_gives_up_with_last_error(self, sleep):
        service = ScriptedPredictionService(RateLimited())

        with pytest.raises(RateLimited):
            run(with_retries(lambda: service.generate(None), RetryPolicy(max_attempts=3), sleep=sleep))

        assert len(service.requests) == 3
        assert sleep.delays == [1.0, 2.0], "No wait after the final attempt"

    def test_non_transient_error_is_not_retried(self, sleep):
        service = ScriptedPredictionService(NonTransientUpstreamError("bad", status_code=400))

        with pytest.raises(NonTransientUpstreamError):
            run(with_retries(lambda: service.generate(None), RetryPolicy(), sleep=sleep))

        assert len(service.requests) == 1
        assert sleep.delays == []

    def test_single_attempt_policy_never_sleeps(self, sleep):
        service = ScriptedPredictionService(TransientUpstreamError("boom"))

        with pytest.raises(TransientUpstreamError):
            run(with_retries(lambda: service.generate(None), RetryPolicy(max_attempts=1), sleep=sleep))

        assert sleep.delays == []

    def test_fixed_backoff_waits_the_same_each_time(self, sleep):
        service = ScriptedPredictionService(
            TransientUpstreamError("a"), TransientUpstreamError("b"), "ok",
        )
        policy = RetryPolicy(base_delay_seconds=0.5, backoff=Backoff.FIXED)

        run(with_retries(lambda: service.generate(None), policy, sleep=sleep))

        assert sleep.delays == [0.5, 0.5]


# =============================================================================
# RESPONSE NORMALIZER UNIT TESTS
# =============================================================================

class TestExtractJsonDocument:
    """Tests for pulling a JSON document out of model text."""

    def test_bare_json(self):
        assert extract_json_document('{"a": 1}') == {"a": 1}

    def test_json_embedded_in_prose(self):
        text = 'Sure, here it is:\n{"a": {"b": [1, 2]}}\nLet me know if you need more.'

        assert extract_json_document(text) == {"a": {"b": [1, 2]}}

    def test_first_object_wins(self):
        assert extract_json_document('x {"a": 1} y {"b": 2}') == {"a": 1}

    @pytest.mark.parametrize("text", ["", "   ", None, "no json here", '{"a": 1', 42])
    def test_unusable_output_raises(self, text):
        with pytest.raises(InvalidModelOutput) as exc_info:
            extract_json_document(text)

        assert exc_info.value.raw == text


class TestAnalysisNormalizer:
    """Tests for validating and upgrading model output shapes."""

    @pytest.fixture
    def normalizer(self):
        return AnalysisNormalizer(clock=lambda: FIXED_NOW)

    def test_current_shape_is_accepted_and_rounded(self, normalizer):
        normalized = normalizer.normalize(CURRENT_DOCUMENT)

        assert normalized.shape is ResponseShape.CURRENT
        assert not normalized.upgraded
        result = normalized.result
        assert result.model_version == "llama-v1"
        assert result.projection.predictions[0].probability_pct == 18.1
        assert result.baseline.predictions[0].probability_pct == 3.0
        assert result.deltas[0].delta_pct == 15.0
        assert result.explainability.top_features[0].feature == "smoker"

    def test_current_shape_with_only_metadata_is_valid(self, normalizer):
        normalized = normalizer.normalize({"model_version": "m", "generated_on": "2025-01-01"})

        assert normalized.shape is ResponseShape.CURRENT
        assert normalized.result.to_dict() == {"model_version": "m", "generated_on": "2025-01-01"}

    def test_current_shape_with_stray_flat_predictions_stays_current(self, normalizer):
        """
        SCENARIO: Model answers in the current shape but also echoes a flat
                  predictions list from an older prompt
        EXPECTED: Read as the current shape with its own baseline and deltas
        REASONING: The extra key is ignored; reading it as legacy would discard
                   the baseline and replace every delta with -1
        """
        document = {
            "model_version": "m",
            "generated_on": "2025-01-01",
            "baseline": {"predictions": [{"condition": "COPD", "years": 10, "probability_pct": 10}]},
            "projection": {"predictions": [{"condition": "COPD", "years": 10, "probability_pct": 30}]},
            "deltas": [{"condition": "COPD", "baseline_pct": 10, "projection_pct": 30, "delta_pct": 20}],
            "predictions": [{"condition": "COPD", "years": 10, "probability_pct": 30}],
        }

        normalized = normalizer.normalize(document)

        assert normalized.shape is ResponseShape.CURRENT
        assert normalized.result.baseline.predictions[0].probability_pct == 10
        assert normalized.result.deltas[0].delta_pct == 20
        assert "predictions" not in normalized.result.to_dict()

    def test_flat_predictions_with_metadata_only_is_legacy(self, normalizer):
        document = dict(LEGACY_DOCUMENT, model_version="old-v0", generated_on="2024-05-05")

        assert normalizer.normalize(document).shape is ResponseShape.LEGACY

    @pytest.mark.parametrize("value, expected", [
        (22.25, 22.3),
        (0.05, 0.1),
        (18.06, 18.1),
        (3.04, 3.0),
        (-1, -1.0),
        (-2.25, -2.3),
    ])
    def test_percentages_round_half_away_from_zero(self, value, expected):
        assert round_pct(value) == expected

    def test_legacy_shape_is_upgraded(self, normalizer):
        """
        SCENARIO: Model answers with a flat predictions list and no metadata
        EXPECTED: Result in the current shape with the legacy predictions as projection
        REASONING: Baseline risk was never computed by legacy prompts, so it is
                   reported as unknown (-1) rather than invented
        """
        normalized = normalizer.normalize(LEGACY_DOCUMENT)

        assert normalized.shape is ResponseShape.LEGACY
        assert normalized.upgraded
        result = normalized.result
        assert result.model_version == "unknown-legacy"
        assert result.generated_on == FIXED_NOW.isoformat()
        assert result.summary == ""
        assert result.baseline.predictions == []
        assert [p.condition for p in result.projection.predictions] == ["Type 2 diabetes", "Hypertension"]
        assert result.projection.predictions[1].probability_pct == 22.3
        for delta, prediction in zip(result.deltas, result.projection.predictions):
            assert delta.condition == prediction.condition
            assert delta.baseline_pct == UNKNOWN_PCT
            assert delta.delta_pct == UNKNOWN_PCT
            assert delta.projection_pct == prediction.probability_pct

    def test_legacy_free_form_explainability_is_dropped(self, normalizer):
        result = normalizer.normalize(LEGACY_DOCUMENT).result

        assert result.explainability is None
        assert "explainability" not in result.to_dict()

    def test_legacy_metadata_is_kept(self, normalizer):
        document = dict(LEGACY_DOCUMENT, model_version="old-v0", generated_on="2024-05-05", summary="s")

        result = normalizer.normalize(document).result

        assert result.model_version == "old-v0"
        assert result.generated_on == "2024-05-05"
        assert result.summary == "s"

    def test_legacy_structured_explainability_is_kept(self, normalizer):
        document = dict(LEGACY_DOCUMENT, explainability={"top_features": [{"feature": "bmi", "impact": 0.3}]})

        result = normalizer.normalize(document).result

        assert result.explainability.top_features[0].feature == "bmi"

    @pytest.mark.parametrize("document", [
        {"foo": 1},
        {"summary": "no metadata and no predictions"},
        {"predictions": [{"condition": "X", "years": -1, "probability_pct": 10}]},
        {"predictions": [{"condition": "X", "probability_pct": 10}]},
        {"model_version": "m", "generated_on": "g", "projection": {"predictions": "nope"}},
        [1, 2, 3],
    ])
    def test_unrecognized_document_raises_with_raw(self, normalizer, document):
        with pytest.raises(InvalidModelOutput) as exc_info:
            normalizer.normalize(document, raw="RAW TEXT")

        assert str(exc_info.value) == "Invalid analysis returned from model"
        assert exc_info.value.raw == "RAW TEXT"
        assert len(exc_info.value.errors) == 2, "Every shape in the chain should have been tried"

    def test_normalize_text_parses_prose_wrapped_json(self, normalizer):
        text = "Result:\n" + json.dumps(LEGACY_DOCUMENT)

        assert normalizer.normalize_text(text).shape is ResponseShape.LEGACY


# =============================================================================
# PREDICTION SERVICE UNIT TESTS
# =============================================================================

def _http_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://llm.test/chat/completions"))


def _completion(content):
    completion = MagicMock()
    completion.usage = None
    completion.choices = [MagicMock(message=MagicMock(content=content))]
    return completion


def _prediction_request(payload=None):
    return PredictionRequest(
        payload=payload if payload is not None else {"lifestyle": {"smoker": True}},
        health_databases=["NHANES", "WHO"],
        model="test-model",
        temperature=0.0,
        max_tokens=1200,
    )


class TestOpenAIPredictionService:
    """Tests for mapping SDK outcomes onto domain errors."""

    def _service(self, settings, **create_kwargs):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(**create_kwargs)
        return OpenAIPredictionService(settings, client=client), client

    def test_returns_stripped_content_in_json_mode(self, settings):
        service, client = self._service(settings, return_value=_completion('  {"a": 1}\n'))

        assert run(service.generate(_prediction_request())) == '{"a": 1}'

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 1200
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_rate_limit_maps_to_rate_limited(self, settings):
        error = openai.RateLimitError("slow down", response=_http_response(429), body=None)
        service, _ = self._service(settings, side_effect=error)

        with pytest.raises(RateLimited) as exc_info:
            run(service.generate(_prediction_request()))

        assert str(exc_info.value) == "Rate limit reached. Please try again in a moment."
        assert exc_info.value.status_code == 429

    def test_server_error_is_transient(self, settings):
        error = openai.APIStatusError("down", response=_http_response(502), body=None)
        service, _ = self._service(settings, side_effect=error)

        with pytest.raises(TransientUpstreamError) as exc_info:
            run(service.generate(_prediction_request()))

        assert exc_info.value.status_code == 502

    def test_client_error_is_not_transient(self, settings):
        error = openai.APIStatusError("bad model", response=_http_response(400), body=None)
        service, _ = self._service(settings, side_effect=error)

        with pytest.raises(NonTransientUpstreamError) as exc_info:
            run(service.generate(_prediction_request()))

        assert not is_transient(exc_info.value)

    def test_connection_error_is_transient(self, settings):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://llm.test"))
        service, _ = self._service(settings, side_effect=error)

        with pytest.raises(TransientUpstreamError) as exc_info:
            run(service.generate(_prediction_request()))

        assert exc_info.value.status_code is None

    def test_empty_content_is_transient(self, settings):
        service, _ = self._service(settings, return_value=_completion(None))

        with pytest.raises(TransientUpstreamError):
            run(service.generate(_prediction_request()))

    def test_prompt_carries_payload_version_and_databases(self):
        prompt = build_analysis_prompt(_prediction_request({"lifestyle": {"bmi": 32}}))

        assert '"bmi": 32' in prompt
        assert '"model_version": "test-model-v1"' in prompt
        assert "NHANES, WHO" in prompt
        assert NO_CITATION in prompt


class TestMockPredictionService:
    """Tests for the deterministic offline prediction service."""

    def _generate(self, service, payload):
        return json.loads(run(service.generate(_prediction_request(payload))))

    def test_output_validates_as_current_shape(self, mock_service):
        text = run(mock_service.generate(_prediction_request()))

        assert AnalysisNormalizer().normalize_text(text).shape is ResponseShape.CURRENT

    def test_smoking_raises_projection_over_baseline(self, mock_service):
        """
        SCENARIO: No stored records, lifestyle says the user smokes
        EXPECTED: Smoking-related conditions have higher projected than baseline risk
        REASONING: smoker adds 10 / 15 / 12 points to CVD / COPD / lung cancer
        """
        document = self._generate(mock_service, {"baseline_records": [], "lifestyle": {"smoker": True}})

        deltas = {d["condition"]: d["delta_pct"] for d in document["deltas"]}
        assert deltas == {"Cardiovascular disease": 10.0, "COPD": 15.0, "Lung cancer": 12.0}
        assert document["explainability"]["top_features"][0]["feature"] == "smoker"

    def test_record_factors_drive_the_baseline(self, mock_service):
        payload = {
            "baseline_records": [{"source": "abha", "payload": {"bmi": 33}}],
            "lifestyle": {"bmi": 33},
        }

        document = self._generate(mock_service, payload)

        baseline = {p["condition"]: p["probability_pct"] for p in document["baseline"]["predictions"]}
        assert baseline["Type 2 diabetes"] == 20.0
        assert all(d["delta_pct"] == 0 for d in document["deltas"])

    def test_nothing_known_reports_unknown(self, mock_service):
        document = self._generate(mock_service, {"baseline_records": [], "lifestyle": {}})

        for prediction in document["projection"]["predictions"]:
            assert prediction["probability_pct"] == -1
            assert prediction["citations"] == [NO_CITATION]
        assert all(d["delta_pct"] == -1 for d in document["deltas"])


# =============================================================================
# ANALYSIS SERVICE UNIT TESTS
# =============================================================================

class TestAnalysisService:
    """Tests for sanitize, call-with-retries and normalize."""

    def test_missing_payload_raises_without_calling_model(self, config, sleep):
        prediction = ScriptedPredictionService(json.dumps(CURRENT_DOCUMENT))
        service = make_analysis_service(prediction, config, sleep)

        with pytest.raises(MissingInput):
            run(service.analyze("u1", None))

        assert prediction.requests == []

    def test_only_sanitized_data_is_sent(self, config, sleep):
        prediction = ScriptedPredictionService(json.dumps(CURRENT_DOCUMENT))
        service = make_analysis_service(prediction, config, sleep)
        payload = {"name": "Asha", "abha_id": "12345678901234", "bmi": 31}

        outcome = run(service.analyze("u1", payload))

        sent = prediction.requests[0].payload
        assert sent == {"abha_id": "user_901234", "bmi": 31}
        assert outcome.input_hash == input_hash(serialize_payload(sent))
        assert payload["name"] == "Asha", "Caller's payload must not be modified"

    def test_defaults_come_from_config(self, config, sleep):
        prediction = ScriptedPredictionService(json.dumps(CURRENT_DOCUMENT))
        service = make_analysis_service(prediction, config, sleep)

        run(service.analyze("u1", {"bmi": 31}))

        request = prediction.requests[0]
        assert request.model == "test-model"
        assert request.temperature == 0.0
        assert request.max_tokens == 1200
        assert request.health_databases == ["NHANES", "WHO"]

    def test_per_call_overrides(self, config, sleep):
        prediction = ScriptedPredictionService(json.dumps(CURRENT_DOCUMENT))
        service = make_analysis_service(prediction, config, sleep)

        run(service.analyze(
            "u1", {"bmi": 31},
            health_databases=["ADA"],
            options=AnalysisOptions(model="other-model", temperature=0.7),
        ))

        request = prediction.requests[0]
        assert request.model == "other-model"
        assert request.temperature == 0.7
        assert request.health_databases == ["ADA"]

    def test_transient_failure_is_retried(self, config, sleep):
        prediction = ScriptedPredictionService(
            TransientUpstreamError("boom", status_code=500),
            json.dumps(CURRENT_DOCUMENT),
        )
        service = make_analysis_service(prediction, config, sleep)

        outcome = run(service.analyze("u1", {"bmi": 31}))

        assert outcome.attempts == 2
        assert outcome.shape is ResponseShape.CURRENT
        assert sleep.delays == [1.0]

    def test_persistent_rate_limit_surfaces_as_rate_limited(self, config, sleep):
        prediction = ScriptedPredictionService(RateLimited())
        service = make_analysis_service(prediction, config, sleep)

        with pytest.raises(RateLimited):
            run(service.analyze("u1", {"bmi": 31}))

        assert len(prediction.requests) == 3

    def test_invalid_output_is_not_retried(self, config, sleep):
        """
        SCENARIO: Model answers with JSON that matches neither shape
        EXPECTED: InvalidModelOutput after exactly one call
        REASONING: Schema failures are deterministic at temperature 0;
                   retrying would only burn quota
        """
        prediction = ScriptedPredictionService('{"unexpected": true}')
        service = make_analysis_service(prediction, config, sleep)

        with pytest.raises(InvalidModelOutput) as exc_info:
            run(service.analyze("u1", {"bmi": 31}))

        assert exc_info.value.raw == '{"unexpected": true}'
        assert len(prediction.requests) == 1

    def test_invalid_output_log_carries_attempt_count(self, config, sleep, caplog):
        prediction = ScriptedPredictionService(
            TransientUpstreamError("busy", status_code=503),
            '{"unexpected": true}',
        )
        service = make_analysis_service(prediction, config, sleep)

        with caplog.at_level(logging.ERROR, logger="arovia.infrastructure.services.analysis_service"):
            with pytest.raises(InvalidModelOutput):
                run(service.analyze("u1", {"bmi": 31}))

        messages = [
            r.getMessage() for r in caplog.records
            if r.name == "arovia.infrastructure.services.analysis_service"
        ]
        assert len(messages) == 1
        assert "User u1" in messages[0]
        assert "after 2 attempt(s)" in messages[0]
        assert '{"unexpected": true}' in messages[0]

    def test_current_answer_is_returned_unchanged(self, config, sleep):
        """
        SCENARIO: Records plus a smoking lifestyle; model answers in the current
                  shape with one 40% projection and no baseline
        EXPECTED: The same document comes back, apart from one-decimal rounding
        REASONING: Only legacy answers are rewritten
        """
        document = {
            "model_version": "test-model-v1",
            "generated_on": "2025-03-01T10:00:00Z",
            "summary": "Smoking raises risk.",
            "baseline": {"predictions": []},
            "projection": {"predictions": [
                {"condition": "COPD", "years": 10, "probability_pct": 40.04, "citations": ["WHO"]},
            ]},
            "deltas": [],
        }
        prediction = ScriptedPredictionService(json.dumps(document))
        service = make_analysis_service(prediction, config, sleep)
        payload = {
            "baseline_records": [{"source": "abha", "payload": {"bmi": 27}}],
            "lifestyle": {"smoker": True},
        }

        outcome = run(service.analyze("u1", payload))

        expected = json.loads(json.dumps(document))
        expected["projection"]["predictions"][0]["probability_pct"] = 40.0
        assert outcome.shape is ResponseShape.CURRENT
        assert outcome.result.to_dict() == expected

    def test_legacy_answer_is_upgraded(self, config, sleep):
        prediction = ScriptedPredictionService(json.dumps(LEGACY_DOCUMENT))
        service = make_analysis_service(prediction, config, sleep)

        outcome = run(service.analyze("u1", {"bmi": 31}))

        assert outcome.shape is ResponseShape.LEGACY
        assert outcome.result.generated_on == FIXED_NOW.isoformat()


# =============================================================================
# USE CASE UNIT TESTS
# =============================================================================

class TestAnalyzeRecordUseCase:
    """Tests for merging history, analyzing and persisting results."""

    def _use_case(self, prediction, repository, config, sleep):
        return AnalyzeRecordUseCase(
            analysis_service=make_analysis_service(prediction, config, sleep),
            record_repository=repository,
            history_limit=10,
        )

    def test_result_is_persisted_with_audit_meta(self, repository, mock_service, config, sleep):
        repository.append(HealthRecord(user_id="u1", source="abha", payload={"bmi": 32}))
        use_case = self._use_case(mock_service, repository, config, sleep)

        result = run(use_case.execute(AnalyzeRequest(
            user_id="u1", lifestyle={"smoker": True}, consent_id="consent-7",
        )))

        stored = repository.find_by_user("u1")[0]
        assert stored.record_id == result.record_id
        assert stored.is_analysis()
        assert stored.payload == result.result.to_dict()
        assert stored.meta == {
            "model_version": "test-model-mock",
            "consent_id": "consent-7",
            "input_hash": result.input_hash,
            "source_shape": "current",
            "attempts": 1,
        }
        assert result.baseline_record_count == 1

    def test_history_is_limited_sanitized_and_excludes_analyses(self, repository, config, sleep):
        """
        SCENARIO: 12 uploads and one earlier analysis exist for the user
        EXPECTED: Only the 10 newest uploads are sent, with identifiers removed
        REASONING: Earlier model output must not be fed back as patient data
        """
        for i in range(12):
            repository.append(HealthRecord(user_id="u1", source="app", payload={"name": "Asha", "visit": i}))
        repository.append(HealthRecord(user_id="u1", source="analysis", payload=CURRENT_DOCUMENT))
        repository.append(HealthRecord(user_id="u2", source="app", payload={"visit": 99}))
        prediction = ScriptedPredictionService(json.dumps(CURRENT_DOCUMENT))
        use_case = self._use_case(prediction, repository, config, sleep)

        run(use_case.execute(AnalyzeRequest(user_id="u1", lifestyle={"sedentary": True})))

        sent = prediction.requests[0].payload
        visits = [r["payload"]["visit"] for r in sent["baseline_records"]]
        assert visits == list(range(11, 1, -1))
        assert all("name" not in r["payload"] for r in sent["baseline_records"])
        assert all(r["source"] == "app" for r in sent["baseline_records"])
        assert sent["lifestyle"] == {"sedentary": True}

    def test_failed_analysis_stores_nothing(self, repository, config, sleep):
        prediction = ScriptedPredictionService("not json at all")
        use_case = self._use_case(prediction, repository, config, sleep)

        with pytest.raises(InvalidModelOutput):
            run(use_case.execute(AnalyzeRequest(user_id="u1")))

        assert repository.get_all() == []

    def test_concurrent_analyses_are_both_persisted(self, repository, mock_service, config, sleep):
        use_case = self._use_case(mock_service, repository, config, sleep)

        async def analyze_twice():
            return await asyncio.gather(
                use_case.execute(AnalyzeRequest(user_id="u1", lifestyle={"smoker": True})),
                use_case.execute(AnalyzeRequest(user_id="u1", lifestyle={"bmi": 35})),
            )

        first, second = run(analyze_twice())

        analyses = [r for r in repository.find_by_user("u1") if r.is_analysis()]
        assert len(analyses) == 2
        assert first.record_id != second.record_id


class TestBatchAnalyzeUseCase:
    """Tests for the fixed-window batch throttle."""

    def _batch(self, prediction, repository, config, batch_size, pause_sleep):
        analyze = AnalyzeRecordUseCase(
            make_analysis_service(prediction, config, SleepRecorder()),
            repository,
        )
        return BatchAnalyzeUseCase(analyze, batch_size=batch_size, pause_seconds=1.5, sleep=pause_sleep)

    def test_groups_are_separated_by_pauses(self, repository, mock_service, config, sleep):
        """
        SCENARIO: 7 requests with batch_size 3
        EXPECTED: 3 groups, a pause after the first two only
        REASONING: Pausing after the last group would just add latency
        """
        batch = self._batch(mock_service, repository, config, 3, sleep)
        requests = [AnalyzeRequest(user_id=f"u{i}", lifestyle={"smoker": True}) for i in range(7)]

        outcome = run(batch.execute(requests))

        assert outcome["metrics"]["groups"] == 3
        assert outcome["metrics"]["processed"] == 7
        assert outcome["metrics"]["failed"] == 0
        assert sleep.delays == [1.5, 1.5]
        assert [r.record_id for r in outcome["results"]] == [
            repository.find_by_user(f"u{i}")[0].record_id for i in range(7)
        ]

    def test_item_failures_are_reported_not_raised(self, repository, settings, config, sleep):
        batch = self._batch(FailingForFlagPredictionService(settings), repository, config, 2, sleep)
        requests = [
            AnalyzeRequest(user_id="ok-1", lifestyle={"smoker": True}),
            AnalyzeRequest(user_id="bad", lifestyle={"fail": True}),
            AnalyzeRequest(user_id="ok-2", lifestyle={"bmi": 31}),
        ]

        outcome = run(batch.execute(requests))

        assert outcome["metrics"]["processed"] == 2
        assert outcome["errors"] == [{
            "index": 1,
            "user_id": "bad",
            "error": "bad request",
            "type": "NonTransientUpstreamError",
        }]

    def test_empty_batch(self, repository, mock_service, config, sleep):
        outcome = run(self._batch(mock_service, repository, config, 5, sleep).execute([]))

        assert outcome["metrics"]["groups"] == 0
        assert sleep.delays == []

    def test_batch_size_must_be_positive(self, repository, mock_service, config, sleep):
        with pytest.raises(ValueError):
            self._batch(mock_service, repository, config, 0, sleep)


class TestRecordUseCases:
    """Tests for uploads, listings and the prevention payload."""

    def test_listing_is_newest_first_and_limited(self, repository):
        upload = UploadRecordUseCase(repository)
        for i in range(25):
            upload.execute("u1", {"visit": i}, source="app")

        records = ListRecordsUseCase(repository, limit=20).execute("u1")

        assert len(records) == 20
        assert records[0].payload == {"visit": 24}
        assert records[-1].payload == {"visit": 5}

    def test_analysis_source_is_reserved(self, repository):
        with pytest.raises(ValueError):
            UploadRecordUseCase(repository).execute("u1", {"x": 1}, source="analysis")

    def test_stored_records_are_isolated_from_caller(self, repository):
        payload = {"labs": {"ldl": 130}}
        record = UploadRecordUseCase(repository).execute("u1", payload)

        payload["labs"]["ldl"] = 999

        assert repository.find_by_user("u1")[0].payload == {"labs": {"ldl": 130}}
        assert record.source is None

    def test_prevention_payload_is_latest_analysis(self, repository):
        prevention = GetPreventionPayloadUseCase(repository)
        assert prevention.execute("u1") is None

        repository.append(HealthRecord(user_id="u1", source="analysis", payload={"model_version": "old"}))
        repository.append(HealthRecord(user_id="u1", source="analysis", payload={"model_version": "new"}))
        repository.append(HealthRecord(user_id="u1", source="app", payload={"bmi": 30}))

        assert prevention.execute("u1") == {"model_version": "new"}


# =============================================================================
# AUTH UNIT TESTS
# =============================================================================

class TestAuth:
    """Tests for password hashing, tokens and login."""

    @pytest.fixture
    def tokens(self, settings):
        return JWTTokenService(settings)

    def test_password_round_trip(self, tokens):
        hashed = tokens.hash_password("s3cret")

        assert hashed != "s3cret"
        assert tokens.verify_password("s3cret", hashed)
        assert not tokens.verify_password("wrong", hashed)

    def test_malformed_hash_does_not_verify(self, tokens):
        assert not tokens.verify_password("s3cret", "not-a-bcrypt-hash")

    def test_token_identifies_user(self, tokens):
        user = User(username="asha", password_hash="x")

        identity = tokens.verify_token(tokens.issue_token(user))

        assert identity.user_id == user.user_id
        assert identity.username == "asha"

    def test_token_signed_with_another_secret_is_rejected(self, tokens):
        forger = JWTTokenService(Settings(jwt_secret="a-different-secret-also-32-bytes-long"))
        token = forger.issue_token(User(username="asha", password_hash="x"))

        with pytest.raises(AuthenticationError):
            tokens.verify_token(token)

    def test_garbage_token_is_rejected(self, tokens):
        with pytest.raises(AuthenticationError):
            tokens.verify_token("not.a.token")

    def test_expired_token_is_rejected(self, settings):
        settings.jwt_expires_days = -1
        tokens = JWTTokenService(settings)

        with pytest.raises(AuthenticationError):
            tokens.verify_token(tokens.issue_token(User(username="asha", password_hash="x")))

    def test_first_login_registers_user(self, tokens):
        users = InMemoryUserRepository()
        login = LoginUseCase(users, tokens, auto_register=True)

        token = login.execute("asha", "s3cret")

        assert users.get_by_username("asha").display_name == "asha"
        assert tokens.verify_token(token).username == "asha"
        assert tokens.verify_token(login.execute("asha", "s3cret")).user_id == users.get_by_username("asha").user_id

    def test_wrong_password_is_rejected(self, tokens):
        login = LoginUseCase(InMemoryUserRepository(), tokens)
        login.execute("asha", "s3cret")

        with pytest.raises(AuthenticationError):
            login.execute("asha", "guess")

    def test_unknown_user_without_auto_register(self, tokens):
        login = LoginUseCase(InMemoryUserRepository(), tokens, auto_register=False)

        with pytest.raises(AuthenticationError):
            login.execute("asha", "s3cret")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
