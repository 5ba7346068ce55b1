"""Shared FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import UnauthorizedError
from app.crud import user as user_crud
from app.models.user import User
from app.services.token_service import TokenService

__all__ = ["get_current_user", "get_db", "get_token_service", "require_bearer_token"]


def get_token_service(request: Request) -> TokenService:
    """The application-wide token service built at startup."""
    return request.app.state.token_service


def require_bearer_token(request: Request) -> str:
    """Raw bearer token from the Authorization header."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("No token found")
    return token.strip()


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Load the user the auth gate authenticated for this request.

    Raises:
        UnauthorizedError: If the request carries no verified identity, or the
            user has since been deleted
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise UnauthorizedError()

    user = await user_crud.get_user_by_id(db, int(user_id))
    if user is None:
        raise UnauthorizedError()

    return user
