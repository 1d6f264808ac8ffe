from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Eventhost API"
    # Comma-separated origins for CORS (e.g. https://eventhost.app,https://admin.eventhost.app). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    API_PUBLIC_URL: str = ""  # e.g. https://api.eventhost.app - prefix for ticket download links

    # Ticket signing. No default: a missing key must stop the process at startup.
    TICKET_SECRET: str

    @field_validator("TICKET_SECRET", mode="after")
    @classmethod
    def require_ticket_secret(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("TICKET_SECRET must be set to a non-empty value")
        return v

    TICKET_GRACE_HOURS: int = 24  # ticket stays valid this long after the event starts
    TICKET_FALLBACK_VALIDITY_DAYS: int = 30  # used when the event date is missing or unparsable
    TICKET_QR_SIZE_PX: int = 256


settings = Settings()
