"""
Dependency Injection Container

This module provides a simple DI container that wires together all the
application dependencies following the Clean Architecture pattern.
"""

from arovia.domain import (
    IPredictionService,
    IAnalysisService,
    IHealthRecordRepository,
    IUserRepository,
    ITokenService,
)
from arovia.infrastructure import (
    Settings,
    get_settings,
    OpenAIPredictionService,
    MockPredictionService,
    AnalysisService,
    AnalyzerConfig,
    JWTTokenService,
    InMemoryHealthRecordRepository,
    InMemoryUserRepository,
)
from arovia.application import (
    AnalyzeRecordUseCase,
    BatchAnalyzeUseCase,
    UploadRecordUseCase,
    ListRecordsUseCase,
    GetPreventionPayloadUseCase,
    LoginUseCase,
    VerifyTokenUseCase,
)


class Container:
    """
    Dependency Injection Container.

    Manages the lifecycle and wiring of all application dependencies.
    Following the Composition Root pattern, all dependencies are
    created and wired here.
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

        # Infrastructure layer - services
        self._prediction_service: IPredictionService | None = None
        self._analysis_service: IAnalysisService | None = None
        self._record_repository: IHealthRecordRepository | None = None
        self._user_repository: IUserRepository | None = None
        self._token_service: ITokenService | None = None

        # Application layer - use cases
        self._analyze_record_use_case: AnalyzeRecordUseCase | None = None
        self._batch_analyze_use_case: BatchAnalyzeUseCase | None = None
        self._upload_record_use_case: UploadRecordUseCase | None = None
        self._list_records_use_case: ListRecordsUseCase | None = None
        self._get_prevention_payload_use_case: GetPreventionPayloadUseCase | None = None
        self._login_use_case: LoginUseCase | None = None
        self._verify_token_use_case: VerifyTokenUseCase | None = None

    @property
    def settings(self) -> Settings:
        """Get application settings."""
        return self._settings

    @property
    def prediction_service(self) -> IPredictionService:
        """Get or create prediction service instance."""
        if self._prediction_service is None:
            if self._settings.use_mock_llm:
                self._prediction_service = MockPredictionService(self._settings)
            else:
                self._prediction_service = OpenAIPredictionService(self._settings)
        return self._prediction_service

    @property
    def analysis_service(self) -> IAnalysisService:
        """Get or create analysis service instance."""
        if self._analysis_service is None:
            self._analysis_service = AnalysisService(
                prediction_service=self.prediction_service,
                config=AnalyzerConfig.from_settings(self._settings),
            )
        return self._analysis_service

    @property
    def record_repository(self) -> IHealthRecordRepository:
        """Get or create health record repository instance."""
        if self._record_repository is None:
            self._record_repository = InMemoryHealthRecordRepository()
        return self._record_repository

    @property
    def user_repository(self) -> IUserRepository:
        """Get or create user repository instance."""
        if self._user_repository is None:
            self._user_repository = InMemoryUserRepository()
        return self._user_repository

    @property
    def token_service(self) -> ITokenService:
        """Get or create token service instance."""
        if self._token_service is None:
            self._token_service = JWTTokenService(self._settings)
        return self._token_service

    @property
    def analyze_record_use_case(self) -> AnalyzeRecordUseCase:
        """Get or create AnalyzeRecordUseCase instance."""
        if self._analyze_record_use_case is None:
            self._analyze_record_use_case = AnalyzeRecordUseCase(
                analysis_service=self.analysis_service,
                record_repository=self.record_repository,
                history_limit=self._settings.history_limit,
            )
        return self._analyze_record_use_case

    @property
    def batch_analyze_use_case(self) -> BatchAnalyzeUseCase:
        """Get or create BatchAnalyzeUseCase instance."""
        if self._batch_analyze_use_case is None:
            self._batch_analyze_use_case = BatchAnalyzeUseCase(
                analyze_use_case=self.analyze_record_use_case,
                batch_size=self._settings.batch_size,
                pause_seconds=self._settings.batch_pause_seconds,
            )
        return self._batch_analyze_use_case

    @property
    def upload_record_use_case(self) -> UploadRecordUseCase:
        """Get or create UploadRecordUseCase instance."""
        if self._upload_record_use_case is None:
            self._upload_record_use_case = UploadRecordUseCase(
                record_repository=self.record_repository,
            )
        return self._upload_record_use_case

    @property
    def list_records_use_case(self) -> ListRecordsUseCase:
        """Get or create ListRecordsUseCase instance."""
        if self._list_records_use_case is None:
            self._list_records_use_case = ListRecordsUseCase(
                record_repository=self.record_repository,
                limit=self._settings.list_limit,
            )
        return self._list_records_use_case

    @property
    def get_prevention_payload_use_case(self) -> GetPreventionPayloadUseCase:
        """Get or create GetPreventionPayloadUseCase instance."""
        if self._get_prevention_payload_use_case is None:
            self._get_prevention_payload_use_case = GetPreventionPayloadUseCase(
                record_repository=self.record_repository,
            )
        return self._get_prevention_payload_use_case

    @property
    def login_use_case(self) -> LoginUseCase:
        """Get or create LoginUseCase instance."""
        if self._login_use_case is None:
            self._login_use_case = LoginUseCase(
                user_repository=self.user_repository,
                token_service=self.token_service,
                auto_register=self._settings.auto_register_users,
            )
        return self._login_use_case

    @property
    def verify_token_use_case(self) -> VerifyTokenUseCase:
        """Get or create VerifyTokenUseCase instance."""
        if self._verify_token_use_case is None:
            self._verify_token_use_case = VerifyTokenUseCase(
                token_service=self.token_service,
            )
        return self._verify_token_use_case


def create_container(settings: Settings | None = None) -> Container:
    """Factory function to create a new container instance."""
    return Container(settings)
