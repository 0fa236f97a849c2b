"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Price Insights API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)
    MAX_REQUEST_BYTES: int = 256 * 1024

    # Analytics service (Cube-style /load endpoint)
    ANALYTICS_API_URL: str = "http://localhost:4000/cubejs-api/v1"
    ANALYTICS_API_TOKEN: str = ""  # set via env/.env
    ANALYTICS_CONTINUE_WAIT_INTERVAL_SEC: float = 0.5
    ANALYTICS_CONNECT_TIMEOUT_SEC: float = 5.0
    # Requests slower than this are logged; nothing is aborted.
    SLOW_QUERY_WARN_MS: int = 3000
    LOAD_RATE: str = "60/minute"
    FILTER_VALUES_TTL_SEC: int = 900

    # Semantic layer members
    FACT_CUBE: str = "prices"
    TIME_DIMENSION: str = "prices.price_date"
    DEFAULT_DATE_PRESET: str = "last30days"
    DEFAULT_GRANULARITY: str = "day"


settings = Settings()
