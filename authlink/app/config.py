from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> str | None:
    cur = Path(__file__).resolve()
    for parent in [cur.parent, *cur.parents]:
        candidate = parent / ".env"
        if candidate.exists():
            return str(candidate)
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file() or ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # backend
    AUTH_BASE_URL: str = "http://localhost:8080"
    API_PREFIX: str = "/api/v1"
    HTTP_TIMEOUT_SEC: float = 8.0
    LOGOUT_PATH: str = ""

    # persistent store
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    STORE_KEY_PREFIX: str = ""
    SESSION_TTL_SEC: int = 0  # 0 = keys never expire

    AUTO_REFRESH_INTERVAL_SEC: float = 60.0
    LOG_LEVEL: str = "INFO"


settings = Settings()
