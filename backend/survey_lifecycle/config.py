from __future__ import annotations

import os

from sqlalchemy.engine import URL

APP_VERSION = "0.3.0"

_DEFAULT_SECRET_KEYS = (
    "change-me-in-production",
    "dev-secret-key-change-in-production",
)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def build_database_url(user: str, password: str, host: str, port: str, database: str) -> URL:
    """asyncpg URL for a TCP host, or for a Unix socket directory when ``host`` is a path."""
    if host.startswith("/"):
        return URL.create(
            "postgresql+asyncpg",
            username=user,
            password=password,
            port=int(port),
            database=database,
            query={"host": host},
        )
    return URL.create(
        "postgresql+asyncpg",
        username=user,
        password=password,
        host=host,
        port=int(port),
        database=database,
    )


class Settings:
    PROJECT_NAME: str = "Survey Lifecycle"
    API_V1_PREFIX: str = "/api/v1"

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "surveys")
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "surveys")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "surveys")

    RESET_DB: bool = os.getenv("RESET_DB", "").lower() in ("1", "true", "yes")

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "survey-lifecycle")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "survey-lifecycle")

    ALLOWED_ORIGINS: list[str] = _split_csv(
        os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")
    )

    @property
    def database_url(self) -> URL:
        return build_database_url(
            self.POSTGRES_USER,
            self.POSTGRES_PASSWORD,
            self.POSTGRES_HOST,
            self.POSTGRES_PORT,
            self.POSTGRES_DB,
        )


settings = Settings()
