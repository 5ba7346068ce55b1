"""User management endpoints."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.crud import user as user_crud
from app.models.user import User
from app.schemas.response import Envelope
from app.schemas.user import User as UserSchema
from app.schemas.user import UserSearch, UserUpdate

router = APIRouter()
logger = structlog.get_logger(__name__)


def _ensure_self_or_admin(current_user: User, target_id: int) -> None:
    if current_user.id != target_id and not current_user.is_admin:
        raise ForbiddenError("Not enough privileges")


def _found_message(count: int) -> str:
    if count == 0:
        return "No users found"
    if count == 1:
        return "1 user found"
    return f"{count} users found"


@router.get("", response_model=Envelope[list[UserSchema]], response_model_exclude_none=True)
async def get_users_by_id_or_name(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    id: Annotated[int | None, Query()] = None,
    name: Annotated[str | None, Query(min_length=1)] = None,
) -> Envelope[list[UserSchema]]:
    """
    Get a user by id, or users whose name contains ``name``.

    Raises:
        BadRequestError: If neither id nor name is given
    """
    if id is not None:
        user = await user_crud.get_user_by_id(db, id)
        users = [user] if user else []
    elif name is not None:
        users = await user_crud.get_users_by_name(db, name)
    else:
        raise BadRequestError("Please provide either an id or a name")

    return Envelope(
        message="User found" if users else "No users found",
        data=[UserSchema.model_validate(user) for user in users],
    )


@router.post("/search", response_model=Envelope[list[UserSchema]], response_model_exclude_none=True)
async def search_users(
    query: UserSearch,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Envelope[list[UserSchema]]:
    """Search users by name or email with pagination and sorting."""
    users, total = await user_crud.search_users(db, query)
    return Envelope(
        message=_found_message(total),
        count=total,
        data=[UserSchema.model_validate(user) for user in users],
    )


@router.put("", response_model=Envelope[UserSchema], response_model_exclude_none=True)
async def update_user_by_id(
    user_in: UserUpdate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Envelope[UserSchema]:
    """
    Update a user. Users may update themselves; admins may update anyone and
    are the only ones allowed to change roles.
    """
    _ensure_self_or_admin(current_user, user_in.id)
    if user_in.role is not None and not current_user.is_admin:
        raise ForbiddenError("Only admins can change roles")

    user = await user_crud.get_user_by_id(db, user_in.id)
    if user is None:
        raise NotFoundError()

    if user_in.email and user_in.email != user.email:
        if await user_crud.email_taken(db, user_in.email):
            raise ConflictError()

    updated_user = await user_crud.update_user(db, user, user_in)
    logger.info("users.updated", user_id=updated_user.id, by_user_id=current_user.id)

    return Envelope(
        message=f"User `{updated_user.name}` with id `{updated_user.id}` updated successfully",
        data=UserSchema.model_validate(updated_user),
    )


@router.delete("", response_model=Envelope[UserSchema], response_model_exclude_none=True)
async def delete_user_by_id(
    id: Annotated[int, Query()],
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Envelope[UserSchema]:
    """Soft-delete a user. Users may delete themselves; admins may delete anyone."""
    _ensure_self_or_admin(current_user, id)

    user = await user_crud.get_user_by_id(db, id)
    if user is None:
        raise NotFoundError()

    deleted_user = await user_crud.soft_delete_user(db, user)
    logger.info("users.deleted", user_id=deleted_user.id, by_user_id=current_user.id)

    return Envelope(
        message=f"User `{deleted_user.name}` with id `{deleted_user.id}` deleted successfully",
        data=UserSchema.model_validate(deleted_user),
    )
