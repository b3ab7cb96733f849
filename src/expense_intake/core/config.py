from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Product-tuning constants carried over from the original receipt flow.
DEFAULT_CONFIDENCE_SCORES: dict[str, float] = {"high": 0.9, "medium": 0.7, "low": 0.5}
DEFAULT_REVIEW_THRESHOLD = 0.72
DEFAULT_FALLBACK_AMOUNT_RANGE: tuple[float, float] = (5.0, 50.0)


class Settings(BaseSettings):
    """
    Runtime configuration for the receipt pipeline.

    Library callers construct it and pass it to the pipeline explicitly. The
    Celery worker builds its own copy on first use.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"

    database_url: str = "sqlite:///./expense_intake.db"
    redis_url: str = "redis://localhost:6379/0"

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"

    vision_max_tokens: int = 1000
    vision_temperature: float = 0.1
    vision_timeout_seconds: float = 30.0
    fetch_timeout_seconds: float = 15.0
    extraction_deadline_seconds: float = 60.0

    default_currency: str = "USD"
    duplicate_window_days: int = 90

    confidence_scores: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_CONFIDENCE_SCORES)
    )
    review_threshold: float = DEFAULT_REVIEW_THRESHOLD
    fallback_amount_range: tuple[float, float] = DEFAULT_FALLBACK_AMOUNT_RANGE

    @field_validator("openai_api_key")
    @classmethod
    def _check_openai_key_format(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if not v.startswith("sk-"):
            raise ValueError("Invalid OpenAI API key format")
        return v

    @field_validator("default_currency")
    @classmethod
    def _check_default_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO code")
        return v

    @field_validator("confidence_scores")
    @classmethod
    def _check_confidence_scores(cls, v: dict[str, float]) -> dict[str, float]:
        missing = set(DEFAULT_CONFIDENCE_SCORES) - set(v)
        if missing:
            raise ValueError(f"confidence_scores missing labels: {sorted(missing)}")
        return v

    def confidence_score(self, label: str) -> float:
        return float(self.confidence_scores.get(label, self.confidence_scores["low"]))
