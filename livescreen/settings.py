from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env next to the package wins over the working directory
load_dotenv(Path(__file__).with_name(".env"))

PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    # Database (falls back to a local SQLite file)
    database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="text", validation_alias="LOG_FORMAT")  # text | json

    # Synchronization channel
    channel_queue_size: int = Field(default=64, validation_alias="CHANNEL_QUEUE_SIZE")
    reconnect_initial_seconds: float = Field(default=0.5, validation_alias="RECONNECT_INITIAL_SECONDS")
    reconnect_max_seconds: float = Field(default=30.0, validation_alias="RECONNECT_MAX_SECONDS")
    reconnect_factor: float = Field(default=2.0, validation_alias="RECONNECT_FACTOR")

    # Timers
    timer_tick_seconds: float = Field(default=1.0, validation_alias="TIMER_TICK_SECONDS")
    orf_max_seconds: int = Field(default=60, validation_alias="ORF_MAX_SECONDS")

    # Subtest catalog
    catalog_dir: Path = Field(default=PACKAGE_DIR / "catalog", validation_alias="CATALOG_DIR")
    import_catalog_on_startup: bool = Field(default=True, validation_alias="IMPORT_CATALOG_ON_STARTUP")

    model_config = SettingsConfigDict(extra="ignore")


settings = Settings()
