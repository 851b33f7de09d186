from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FILEDROP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    SECRET_KEY: str = "secret-key"
    ALGORITHM: str = "HS256"
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 100 * GIB
    BASE_URL: Optional[str] = None
    CORS_ORIGINS: List[str] = ["*"]
    CLEANUP_INTERVAL: int = 3600  # seconds
    STALE_UPLOAD_SECONDS: int = 7 * 24 * 3600  # seconds (7 days)
    RETENTION_ENABLED: bool = True
    DEFAULT_EXPIRY_DAYS: int = 7
    MAX_EXPIRY_DAYS: int = 30
    LOG_LEVEL: str = "INFO"


settings = Settings()
