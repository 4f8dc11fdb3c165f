from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyHttpUrl, field_validator
import secrets
import os
from pathlib import Path

# Ensure the SQLite database directory exists
sqlite_db_path = Path("./sqlite_db")
sqlite_db_path.mkdir(exist_ok=True)

class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Event Share Access Service"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    # Server settings
    PORT: int = int(os.environ.get("PORT", 8000))

    # Security
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    JWT_SECRET_KEY: str = os.environ.get("JWT_SECRET_KEY", secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"

    # Testing
    TESTING: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: str | List[str]) -> List[str] | str:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./sqlite_db/app.db")
    SQL_ECHO: bool = False

    # Documentation
    SHOW_DOCS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Access model
    DEFAULT_GRACE_PERIOD_HOURS: int = 24
    FORCE_LOGIN_GRACE_HOURS: int = 1
    ACCESS_DECISION_TIMEOUT_SECONDS: float = 5.0  # fail closed after this
    VISIBILITY_TRANSITION_MAX_RETRIES: int = 3
    SHARE_TOKEN_BYTES: int = 24
    GUEST_SESSION_HEADER: str = "X-Guest-Session"

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", env_file_encoding="utf-8")

# Global instance
settings = Settings()
