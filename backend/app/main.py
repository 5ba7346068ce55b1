"""FastAPI Application Entry Point."""

import logging
import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.error_handling import register_exception_handlers
from app.api.v1 import api_router
from app.core.config import settings
from app.core.database import AsyncSessionLocal, engine
from app.core.errors import TokenConfigError
from app.core.rate_limit import limiter
from app.core.security import TokenCodec, validate_token_keys
from app.middleware import AuthGateMiddleware
from app.services.session_store import SessionStore, create_redis_client
from app.services.token_service import TokenService
from app.services.user_directory import DatabaseUserDirectory

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = structlog.get_logger(__name__)

# Initialize Sentry for error tracking
# IMPORTANT: Must be done BEFORE creating FastAPI app
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.redis import RedisIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
        ],
        # Tokens and emails must never leave the process
        send_default_pii=False,
        release=f"usergate-backend@{os.getenv('GIT_COMMIT', 'dev')}",
        attach_stacktrace=True,
    )
    logger.info("sentry.initialized", environment=settings.SENTRY_ENVIRONMENT)
else:
    logger.info("sentry.disabled")


def build_token_service() -> TokenService:
    """Wire the token service against the configured Redis and database."""
    store = SessionStore(
        create_redis_client(settings),
        operation_timeout=settings.REDIS_TIMEOUT_SECONDS,
    )
    users = DatabaseUserDirectory(AsyncSessionLocal, timeout=settings.DATABASE_TIMEOUT_SECONDS)
    return TokenService.from_settings(settings, store, users, codec=TokenCodec.from_settings(settings))


def create_app(token_service: TokenService | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        token_service: Pre-wired token service. Built from settings when omitted.

    Returns:
        Configured FastAPI application
    """
    token_service = token_service or build_token_service()

    app = FastAPI(
        title=settings.APP_NAME,
        description="UserGate - User management with JWT access and refresh tokens",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.token_service = token_service

    # Configure rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    # CORSMiddleware answers real preflights; the auth gate is added last so it
    # wraps everything and sees each request first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CORS_ALLOW_ORIGIN],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "Accept",
            "Origin",
            "X-Requested-With",
        ],
        max_age=settings.CORS_MAX_AGE,
    )
    app.add_middleware(
        AuthGateMiddleware,
        token_service=token_service,
        public_paths=settings.PUBLIC_PATHS,
        token_exempt_paths=settings.TOKEN_EXEMPT_PATHS,
        allow_origin=settings.CORS_ALLOW_ORIGIN,
    )

    @app.on_event("startup")
    async def startup_event() -> None:
        """Refuse to serve with keys that cannot sign and verify."""
        try:
            validate_token_keys(token_service.codec, settings.JWT_ISSUER)
        except TokenConfigError as exc:
            logger.error("startup.token_keys_invalid", error=str(exc))
            raise SystemExit(1) from exc
        logger.info("startup.token_keys_validated", algorithm=token_service.codec.algorithm)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await token_service.store.close()
        await engine.dispose()
        logger.info("shutdown.complete")

    @app.get("/api/v1/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "success", "message": "Server is running..."}

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.APP_NAME} API",
            "docs": "/api/docs",
            "health": "/api/v1/health",
        }

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
