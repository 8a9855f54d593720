from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve repo root: .../spendlog/core/settings.py -> parents[2] == repo root
_REPO_ROOT = Path(__file__).resolve().parents[2]
_ENV_FILE = _REPO_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Storage binding
    DATABASE_URL: str = "sqlite:///./spendlog.db"

    # Auth (do not hardcode secrets; set via .env)
    AUTH_SECRET: str = ""
    AUTH_BASE_URL: str = "http://localhost:8000"
    ALGORITHM: str = "HS256"
    SESSION_COOKIE_NAME: str = "spendlog.session_token"
    SESSION_EXPIRES_SECONDS: int = 60 * 60 * 24 * 7
    SESSION_UPDATE_AGE_SECONDS: int = 60 * 60 * 24
    OAUTH_STATE_EXPIRE_MINUTES: int = 10

    # Google SSO
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Gemini extraction
    GOOGLE_GENERATIVE_AI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # CORS (single frontend origin)
    CORS_ORIGIN: str = "http://localhost:3000"
    MOBILE_SCHEMES: list[str] = ["exp://", "ish://"]

    # Optional guard for POST /api/migrate
    MIGRATE_TOKEN: str = ""

    @property
    def trusted_origins(self) -> list[str]:
        return [self.CORS_ORIGIN, self.AUTH_BASE_URL, *self.MOBILE_SCHEMES]


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    # Basic runtime validation (avoid hardcoding secrets)
    if settings.ENV != "development" and not settings.AUTH_SECRET:
        raise ValueError("AUTH_SECRET must be set in environment (.env) and must not be empty")
    return settings
