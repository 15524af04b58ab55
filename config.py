from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api/v1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # database
    DATABASE_URL: str = "mongodb://127.0.0.1:27017"
    DATABASE_NAME: str = "global_tracking"
    SERVER_SELECTION_TIMEOUT_MS: int = 5000

    # auth
    SESSION_TTL_DAYS: int = 7
    FRONTEND_ORIGIN: str | None = None

    # uploads
    FILE_UPLOAD_PATH: str = "public/uploads"
    MAX_FILE_UPLOAD: int = 2 * 1024 * 1024

    # developer utilities (seed scripts) are refused in production unless set
    DEV_UTILS_ALLOWED: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
