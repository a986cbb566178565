from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # Pydantic Settings config (v2)
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = Field(
        default="sqlite:///./datashare.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )

    # JWT Settings
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080  # 7 days in minutes

    # Data read path (rows per fetch, hard ceiling for presentation performance)
    DATA_PAGE_SIZE: int = 100
    MAX_DATA_PAGE_SIZE: int = 100

    # Uploads
    MAX_UPLOAD_BYTES: int = 20 * 1024 * 1024  # 20 MB

    # Application Settings
    APP_NAME: str = "Data Share Dashboard"
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # First administrator, created at startup only when no users exist yet
    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None

settings = Settings()
