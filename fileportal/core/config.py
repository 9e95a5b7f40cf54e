from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

MB = 1024 * 1024


class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    JWT_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    EXPECTED_JWT_ISSUER: Optional[str] = None
    EXPECTED_JWT_AUDIENCE: Optional[str] = None

    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_BUCKET_NAME: str = "portal-files"
    S3_ENDPOINT_URL: str = ""
    S3_REGION_NAME: Optional[str] = None

    # Legacy blob store: plain directory tree, one file per key
    LOCAL_STORAGE_PATH: str = "/var/data/portal_blobs"

    STORAGE_BACKEND: str = "local"  # 's3' or 'local'
    DATABASE_URL: str = "sqlite+aiosqlite:///./portal.db"

    # Session/chunk keys and final file keys never share a prefix
    UPLOAD_KEY_PREFIX: str = "uploads/"
    FILE_KEY_PREFIX: str = "files/"

    EAGER_CHUNK_SIZE_MB: int = 3
    EAGER_MAX_FILE_MB: int = 100
    LAZY_CHUNK_SIZE_MB: int = 5
    LAZY_MAX_FILE_MB: int = 500

    DELETE_MAX_ATTEMPTS: int = 2
    DELETE_SETTLE_DELAY_MS: int = 100
    SESSION_TTL_HOURS: int = 24
    SIGNED_URL_TTL_SECONDS: int = 3600

    SERVICE_BASE_URL: str = "http://localhost:8000"
    SERVICE_PORT: int = 8000
    CORS_ORIGINS: str = "*"  # comma separated

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env" if ENV == "local" else None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def eager_chunk_size(self) -> int:
        return self.EAGER_CHUNK_SIZE_MB * MB

    @property
    def eager_max_file_size(self) -> int:
        return self.EAGER_MAX_FILE_MB * MB

    @property
    def lazy_chunk_size(self) -> int:
        return self.LAZY_CHUNK_SIZE_MB * MB

    @property
    def lazy_max_file_size(self) -> int:
        return self.LAZY_MAX_FILE_MB * MB

    @property
    def delete_settle_delay(self) -> float:
        """Settling delay between blob delete attempts, in seconds."""
        return self.DELETE_SETTLE_DELAY_MS / 1000


settings = Settings()
