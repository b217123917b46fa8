import os
from dataclasses import dataclass, field
from typing import List


DEFAULT_HEALTH_DATABASES = "NHANES,PubMed,WHO,ADA,AHA"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    """Application configuration settings."""

    # Prediction service (any OpenAI-compatible endpoint, Groq by default)
    llm_api_key: str = field(
        default_factory=lambda: os.getenv("LLM_API_KEY") or os.getenv("GROQ_API_KEY", "")
    )
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
    )
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "llama-3.2-70b-versatile")
    )
    llm_temperature: float = field(
        default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.0"))
    )
    llm_max_tokens: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "1200"))
    )
    llm_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
    )
    health_databases: List[str] = field(
        default_factory=lambda: _env_list("HEALTH_DATABASES", DEFAULT_HEALTH_DATABASES)
    )
    use_mock_llm: bool = field(
        default_factory=lambda: _env_bool("USE_MOCK_LLM", "false")
    )

    # Retry and batch throttling
    retry_max_attempts: int = field(
        default_factory=lambda: int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    )
    retry_base_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0"))
    )
    retry_backoff: str = field(
        default_factory=lambda: os.getenv("RETRY_BACKOFF", "exponential")
    )
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("BATCH_SIZE", "5"))
    )
    batch_pause_seconds: float = field(
        default_factory=lambda: float(os.getenv("BATCH_PAUSE_SECONDS", "1.0"))
    )
    batch_max_items: int = field(
        default_factory=lambda: int(os.getenv("BATCH_MAX_ITEMS", "20"))
    )
    history_limit: int = 10
    list_limit: int = 20

    # Auth
    jwt_secret: str = field(
        default_factory=lambda: os.getenv("JWT_SECRET", "changeme")
    )
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = field(
        default_factory=lambda: int(os.getenv("JWT_EXPIRES_DAYS", "30"))
    )
    auto_register_users: bool = field(
        default_factory=lambda: _env_bool("AUTO_REGISTER_USERS", "true")
    )

    # Inbound rate limiting
    rate_limit_requests: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_REQUESTS", "10"))
    )
    rate_limit_window_seconds: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    )

    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )

    @property
    def rate_limit(self) -> str:
        """Limit string in the format understood by slowapi."""
        return f"{self.rate_limit_requests}/{self.rate_limit_window_seconds} seconds"


def get_settings() -> Settings:
    """Factory function to create settings instance."""
    return Settings()
