"""
Settings for the procurement core, read from the environment (and ``.env``).
"""
import warnings
from typing import List, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_WEAK_SECRET_KEYS = {
    "your-secret-key-change-in-production",
    "change-me-in-production",
    "secret",
    "changeme",
}
_WEAK_DB_PASSWORDS = {"coprocure", "postgres", "password", "changeme", ""}
_MIN_SECRET_KEY_LENGTH = 32


def _reject_unless_debug(info: ValidationInfo, message: str) -> None:
    """Weak credentials are fatal in production and a warning with DEBUG=true."""
    if not info.data.get("DEBUG", False):
        raise ValueError(message)
    warnings.warn(message, UserWarning, stacklevel=3)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Coprocure"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Bearer tokens are issued by the external auth layer and signed with this key
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    POSTGRES_USER: str = "coprocure"
    POSTGRES_PASSWORD: str = "coprocure"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "coprocure"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    WORKFLOW_ENGINE_BASE_URL: Optional[str] = None
    WORKFLOW_ENGINE_TOKEN: Optional[str] = None
    WORKFLOW_CONFIRM_URL: Optional[str] = None  # defaults to {base}/api/upload/confirm
    WORKFLOW_CALLBACK_TOKEN: Optional[str] = None  # presented by the engine on /progress and /finalize
    SESSION_OPEN_TIMEOUT_SECONDS: float = 5.0
    WORKFLOW_TIMEOUT_SECONDS: float = 30.0

    STATUS_POLL_INTERVAL_SECONDS: int = 5
    AUDIT_DEFAULT_LIMIT: int = 50

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("SECRET_KEY")
    @classmethod
    def check_secret_key(cls, v: str, info: ValidationInfo) -> str:
        if v in _WEAK_SECRET_KEYS or len(v) < _MIN_SECRET_KEY_LENGTH:
            _reject_unless_debug(
                info,
                f"SECRET_KEY is a default or shorter than {_MIN_SECRET_KEY_LENGTH} characters; "
                "generate one with: openssl rand -hex 32",
            )
        return v

    @field_validator("POSTGRES_PASSWORD")
    @classmethod
    def check_postgres_password(cls, v: str, info: ValidationInfo) -> str:
        if v in _WEAK_DB_PASSWORDS:
            _reject_unless_debug(info, "POSTGRES_PASSWORD is a default value; set a strong database password")
        return v

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def build_database_url(cls, v: Optional[str], info: ValidationInfo) -> str:
        if v:
            return v
        d = info.data
        return (
            f"postgresql://{d.get('POSTGRES_USER')}:{d.get('POSTGRES_PASSWORD')}"
            f"@{d.get('POSTGRES_HOST')}:{d.get('POSTGRES_PORT')}/{d.get('POSTGRES_DB')}"
        )

    @field_validator("WORKFLOW_ENGINE_BASE_URL", "WORKFLOW_CONFIRM_URL")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    @property
    def workflow_confirm_url(self) -> Optional[str]:
        if self.WORKFLOW_CONFIRM_URL:
            return self.WORKFLOW_CONFIRM_URL
        if self.WORKFLOW_ENGINE_BASE_URL:
            return f"{self.WORKFLOW_ENGINE_BASE_URL}/api/upload/confirm"
        return None


settings = Settings()
