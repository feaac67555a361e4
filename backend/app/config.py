from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Sensor Stream"
    DATABASE_URL: str = "sqlite:///./sensor_stream.db"

    # Readings kept in memory per device, oldest dropped first
    READING_RETENTION: int = Field(1000, ge=1)

    # Messages a slow observer may lag behind before it is dropped
    OUTBOX_SIZE: int = Field(256, ge=1)

    ANALYSIS_WINDOW: int = 20
    ANALYZER_URL: Optional[str] = None
    ANALYZER_TIMEOUT: float = 10.0

    # 0 keeps devices active until their connection closes
    LIVENESS_TIMEOUT_SECONDS: float = 0
    SWEEP_INTERVAL_SECONDS: float = 10

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None


settings = Settings()
