from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from tablesync.core.environment import env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=env.env_file, env_file_encoding="utf-8", extra="ignore")

    # Local key-value store backing task and template persistence
    database_url: str = Field(
        default="sqlite:///./data/tablesync.db",
        validation_alias="TABLESYNC_DATABASE_URL",
    )

    # Upload endpoint that turns a spreadsheet into remote table rows
    sync_endpoint_url: str = Field(
        default="http://localhost:5000/api/upload",
        validation_alias="TABLESYNC_SYNC_ENDPOINT_URL",
    )
    sync_timeout_seconds: float = Field(default=60.0, validation_alias="TABLESYNC_SYNC_TIMEOUT_SECONDS")

    # Per-file retry backoff is base * attempt number
    retry_backoff_seconds: float = Field(default=1.0, validation_alias="TABLESYNC_RETRY_BACKOFF_SECONDS")
    max_log_entries: int = Field(default=100, validation_alias="TABLESYNC_MAX_LOG_ENTRIES")

    # First day of the week for the this_week filter, 0 = Sunday
    week_start: int = Field(default=0, ge=0, le=6, validation_alias="TABLESYNC_WEEK_START")

    tasks_storage_key: str = Field(default="scheduled_tasks", validation_alias="TABLESYNC_TASKS_KEY")
    templates_storage_key: str = Field(default="sync_templates", validation_alias="TABLESYNC_TEMPLATES_KEY")

    cors_allow_origins: list[str] | str = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        validation_alias="TABLESYNC_CORS_ALLOW_ORIGINS",
    )
    log_level: str = Field(default="INFO", validation_alias="TABLESYNC_LOG_LEVEL")


def _build_database_url_from_data_dir() -> Optional[str]:
    if not env.data_dir:
        return None
    return f"sqlite:///{env.data_dir}/tablesync.db"


settings = Settings()

if isinstance(settings.cors_allow_origins, str):
    settings.cors_allow_origins = [
        o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()
    ]

# An explicit TABLESYNC_DATABASE_URL wins over TABLESYNC_DATA_DIR
_db_url_from_data_dir = _build_database_url_from_data_dir()
if _db_url_from_data_dir and not env.has_explicit_database_url:
    settings.database_url = _db_url_from_data_dir

# Normalize CORS origins: drop trailing slashes and whitespace
settings.cors_allow_origins = [o.rstrip("/") for o in settings.cors_allow_origins]
