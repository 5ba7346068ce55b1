"""Authentication endpoints: registration, login, token refresh, logout."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_token_service, require_bearer_token
from app.core.errors import ConflictError
from app.core.rate_limit import auth_login_limit, auth_refresh_limit, auth_register_limit
from app.crud import user as user_crud
from app.models.user import User
from app.schemas.response import Envelope
from app.schemas.token import RefreshTokenRequest, Token
from app.schemas.user import User as UserSchema
from app.schemas.user import UserCreate, UserLogin
from app.services.token_service import TokenPair, TokenService

router = APIRouter()
logger = structlog.get_logger(__name__)


class LoginData(BaseModel):
    """Authenticated user and the freshly issued token pair."""

    user: UserSchema
    token: Token


def _token_body(pair: TokenPair) -> Token:
    return Token(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post(
    "/register",
    response_model=Envelope[UserSchema],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
@auth_register_limit
async def register(
    request: Request,
    response: Response,
    user_in: UserCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Envelope[UserSchema]:
    """
    Register a new user.

    Raises:
        ConflictError: If the email is already registered
    """
    if await user_crud.email_taken(db, user_in.email):
        raise ConflictError()

    try:
        user = await user_crud.create_user(db, user_in)
    except IntegrityError as exc:
        # Lost a race with a concurrent registration of the same email
        await db.rollback()
        raise ConflictError() from exc

    logger.info("auth.user_registered", user_id=user.id)

    return Envelope(
        message=f"User `{user.name}` with id `{user.id}` created successfully",
        data=UserSchema.model_validate(user),
    )


@router.post("/login", response_model=Envelope[LoginData], response_model_exclude_none=True)
@auth_login_limit
async def login(
    request: Request,
    response: Response,
    credentials: UserLogin,
    token_service: Annotated[TokenService, Depends(get_token_service)],
) -> Envelope[LoginData]:
    """Verify email and password and issue an access/refresh token pair."""
    result = await token_service.login(credentials)
    return Envelope(
        message="User verified",
        data=LoginData(
            user=UserSchema.model_validate(result.user),
            token=_token_body(result.tokens),
        ),
    )


@router.post("/refresh", response_model=Envelope[Token], response_model_exclude_none=True)
@auth_refresh_limit
async def refresh_token(
    request: Request,
    response: Response,
    refresh_request: RefreshTokenRequest,
    token_service: Annotated[TokenService, Depends(get_token_service)],
) -> Envelope[Token]:
    """
    Exchange a refresh token for a new token pair.

    The presented refresh token is single-use. The caller's access token may
    be expired or missing.
    """
    pair = await token_service.refresh(refresh_request.refresh_token)
    return Envelope(message="Token refreshed", data=_token_body(pair))


@router.post("/logout", response_model=Envelope[None], response_model_exclude_none=True)
async def logout(
    access_token: Annotated[str, Depends(require_bearer_token)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
) -> Envelope[None]:
    """Revoke the bearer access token and its paired refresh token."""
    await token_service.logout(access_token)
    return Envelope(message="User logged out")


@router.get("/me", response_model=Envelope[UserSchema], response_model_exclude_none=True)
async def get_current_user_info(
    current_user: Annotated[User, Depends(get_current_user)],
) -> Envelope[UserSchema]:
    """Get current user information."""
    return Envelope(message="User found", data=UserSchema.model_validate(current_user))
