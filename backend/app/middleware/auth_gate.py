"""Authentication gate middleware.

Classifies every request before it reaches a route:

1. OPTIONS (CORS preflight): forwarded, no credential check.
2. Public path: forwarded unconditionally.
3. No ``Authorization`` header: rejected, "No token found".
4. Bearer token: verified (codec + session store). Valid tokens are forwarded
   with ``request.state.user_id`` set. Invalid tokens are rejected with
   "Invalid token", except on token-exempt paths (refresh, login, logout),
   which are forwarded without an authenticated user.

Every response, forwarded or rejected, carries the CORS allow-origin header.
"""

from typing import Iterable

import structlog
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from app.core.errors import StoreUnavailableError, UnauthorizedError
from app.schemas.response import fail_body
from app.services.token_service import TokenService

logger = structlog.get_logger(__name__)

NO_TOKEN_MESSAGE = "No token found"
INVALID_TOKEN_MESSAGE = "Invalid token"


def _normalize(path: str) -> str:
    return path.rstrip("/") or "/"


class AuthGateMiddleware(BaseHTTPMiddleware):
    """
    Allow/deny/pass-through decision point in front of every route.

    Usage:
        app.add_middleware(
            AuthGateMiddleware,
            token_service=token_service,
            public_paths=settings.PUBLIC_PATHS,
            token_exempt_paths=settings.TOKEN_EXEMPT_PATHS,
            allow_origin=settings.CORS_ALLOW_ORIGIN,
        )
    """

    def __init__(
        self,
        app: ASGIApp,
        token_service: TokenService,
        public_paths: Iterable[str] = (),
        token_exempt_paths: Iterable[str] = (),
        allow_origin: str = "*",
    ) -> None:
        super().__init__(app)
        self.token_service = token_service
        self.public_paths = frozenset(_normalize(p) for p in public_paths)
        self.token_exempt_paths = frozenset(_normalize(p) for p in token_exempt_paths)
        self.allow_origin = allow_origin

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = _normalize(request.url.path)

        if request.method == "OPTIONS":
            logger.debug("auth_gate.preflight", path=path)
            return await self._forward(request, call_next)

        if path in self.public_paths:
            return await self._forward(request, call_next)

        authorization = request.headers.get("Authorization")
        if not authorization:
            logger.info("auth_gate.rejected", path=path, reason="missing_token")
            return self._reject(NO_TOKEN_MESSAGE)

        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        try:
            if scheme.lower() != "bearer" or not token:
                raise UnauthorizedError(INVALID_TOKEN_MESSAGE, detail="malformed authorization header")
            context = await self.token_service.verify_access(token)
        except UnauthorizedError as exc:
            if path in self.token_exempt_paths:
                logger.info("auth_gate.exempt_passthrough", path=path, reason=exc.detail)
                return await self._forward(request, call_next)
            logger.info(
                "auth_gate.rejected",
                path=path,
                reason=exc.detail or exc.message,
                store_unavailable=isinstance(exc, StoreUnavailableError),
            )
            return self._reject(INVALID_TOKEN_MESSAGE)

        request.state.user_id = context.user_id
        request.state.token_claims = context.claims
        return await self._forward(request, call_next)

    async def _forward(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("auth_gate.downstream_error", method=request.method, path=request.url.path)
            response = JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=fail_body("Internal Server Error", status="error"),
            )
        return self._with_cors(response)

    def _reject(self, message: str) -> Response:
        response = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=fail_body(message),
            headers={"WWW-Authenticate": "Bearer"},
        )
        return self._with_cors(response)

    def _with_cors(self, response: Response) -> Response:
        response.headers["Access-Control-Allow-Origin"] = self.allow_origin
        return response
