"""Application Configuration using Pydantic Settings."""

import os
from pathlib import Path
from typing import Annotated, List
from urllib.parse import urlparse

from pydantic import RedisDsn, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

SUPPORTED_JWT_ALGORITHMS = ("RS256", "RS384", "RS512")


def get_env_file() -> str:
    """
    Determine which .env file to load based on APP_ENV.

    Returns:
        Path to the .env file to load
    """
    app_env = os.getenv("APP_ENV", "development")
    base_dir = Path(__file__).parent.parent.parent  # backend/

    if app_env == "test":
        env_file = base_dir / ".env.test"
        if env_file.exists():
            return str(env_file)

    if app_env == "production":
        env_file = base_dir / ".env.production"
        if env_file.exists():
            return str(env_file)

    # Default to .env
    return str(base_dir / ".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "UserGate"
    APP_ENV: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"

    # Tokens
    JWT_ISSUER: str = "usergate"
    JWT_ALGORITHM: str = "RS256"
    # PEM text or base64-encoded PEM, one independent key pair per token class
    ACCESS_TOKEN_PRIVATE_KEY: str = ""
    ACCESS_TOKEN_PUBLIC_KEY: str = ""
    REFRESH_TOKEN_PRIVATE_KEY: str = ""
    REFRESH_TOKEN_PUBLIC_KEY: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Database
    DATABASE_URL: str
    DATABASE_TIMEOUT_SECONDS: float = 5.0

    # Redis (session store)
    REDIS_URL: RedisDsn
    REDIS_TIMEOUT_SECONDS: float = 2.0

    # Auth gate
    PUBLIC_PATHS: Annotated[List[str], NoDecode] = [
        "/",
        "/api/docs",
        "/api/redoc",
        "/api/openapi.json",
        "/api/v1/health",
        "/api/v1/users/login",
        "/api/v1/users/register",
        "/api/v1/users/refresh",
    ]
    TOKEN_EXEMPT_PATHS: Annotated[List[str], NoDecode] = [
        "/api/v1/users/login",
        "/api/v1/users/refresh",
        "/api/v1/users/logout",
    ]

    # CORS
    CORS_ALLOW_ORIGIN: str = "*"
    CORS_MAX_AGE: int = 600  # Preflight cache duration in seconds

    # Error Tracking (Sentry)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = ""  # Empty means REDIS_URL
    RATE_LIMIT_AUTH_LOGIN: str = "5/minute"  # Login attempts (brute-force protection)
    RATE_LIMIT_AUTH_REGISTER: str = "3/minute"  # Registration (spam prevention)
    RATE_LIMIT_AUTH_REFRESH: str = "10/minute"  # Token refresh
    RATE_LIMIT_API_DEFAULT: str = "100/minute"

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only asymmetric RSA algorithms are accepted."""
        algorithm = v.strip().upper()
        if algorithm not in SUPPORTED_JWT_ALGORITHMS:
            raise ValueError(
                f"JWT_ALGORITHM '{v}' is not supported. "
                f"Use one of: {', '.join(SUPPORTED_JWT_ALGORITHMS)}"
            )
        return algorithm

    @field_validator("PUBLIC_PATHS", "TOKEN_EXEMPT_PATHS", mode="before")
    @classmethod
    def parse_paths(cls, v: str | List[str]) -> List[str]:
        """Parse path lists from a comma-separated string or a list."""
        if isinstance(v, str):
            v = v.split(",")
        paths = [path.strip() for path in v if path and path.strip()]
        for path in paths:
            if not path.startswith("/"):
                raise ValueError(f"Path '{path}' must start with '/'")
        return paths

    @field_validator("CORS_ALLOW_ORIGIN", mode="after")
    @classmethod
    def validate_cors_origin(cls, origin: str, info) -> str:
        """
        Validate the CORS allow-origin value.

        Rules:
        1. "*" opens the API to every origin
        2. Otherwise a valid URL (scheme://host[:port])
        3. In production: HTTPS only (except localhost/127.0.0.1)

        Raises:
            ValueError: If the origin violates these rules
        """
        origin = origin.strip()
        if not origin:
            raise ValueError("CORS_ALLOW_ORIGIN cannot be empty")
        if origin == "*":
            return origin

        if "*" in origin:
            raise ValueError(
                f"CORS origin '{origin}' contains a partial wildcard. "
                "Use '*' on its own or an exact origin."
            )

        parsed = urlparse(origin)
        if not parsed.scheme:
            raise ValueError(
                f"CORS origin '{origin}' must include scheme (http:// or https://)"
            )
        if not parsed.netloc:
            raise ValueError(f"CORS origin '{origin}' must include hostname")

        if info.data.get("APP_ENV", "development") == "production":
            is_localhost = parsed.netloc.startswith("localhost") or parsed.netloc.startswith("127.0.0.1")
            if parsed.scheme != "https" and not is_localhost:
                raise ValueError(
                    f"CORS origin '{origin}' must use HTTPS in production. "
                    f"Change to: https://{parsed.netloc}"
                )

        return origin

    @model_validator(mode="after")
    def validate_token_lifetimes(self) -> "Settings":
        """Access tokens must be short-lived compared to refresh tokens."""
        if self.ACCESS_TOKEN_EXPIRE_MINUTES <= 0 or self.REFRESH_TOKEN_EXPIRE_MINUTES <= 0:
            raise ValueError("Token lifetimes must be positive")
        if self.REFRESH_TOKEN_EXPIRE_MINUTES <= self.ACCESS_TOKEN_EXPIRE_MINUTES:
            raise ValueError(
                "REFRESH_TOKEN_EXPIRE_MINUTES must be greater than ACCESS_TOKEN_EXPIRE_MINUTES"
            )
        return self

    @property
    def rate_limit_storage_uri(self) -> str:
        return self.RATE_LIMIT_STORAGE_URI or str(self.REDIS_URL)


# Create global settings instance
settings = Settings()  # type: ignore
