from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Map the env var named DATABASE_URL to this field
    database_url: str = Field(default="sqlite:///./smmpanel.db", alias="DATABASE_URL")

    app_name: str = "SMM Panel Wallet"
    log_level: str = "INFO"
    currency: str = "USD"

    # listEntries / list endpoints: limit = min(requested, page_size_max)
    page_size_default: int = 10
    page_size_max: int = 100

    # How long a POST /orders with a given Idempotency-Key stays "in flight"
    idempotency_lock_secs: int = 15

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

settings = Settings()
