"""CRUD operations for User model."""

from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_password_hash, verify_password
from app.models.user import Role, User
from app.schemas.user import UserCreate, UserSearch, UserUpdate


def _live_users():
    return select(User).where(User.deleted_at.is_(None))


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """
    Get user by ID.

    Args:
        db: Database session
        user_id: User ID

    Returns:
        User object or None if not found or soft-deleted
    """
    result = await db.execute(_live_users().where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """
    Get user by email address.

    Args:
        db: Database session
        email: User email

    Returns:
        User object or None if not found or soft-deleted
    """
    result = await db.execute(_live_users().where(User.email == email))
    return result.scalar_one_or_none()


async def email_taken(db: AsyncSession, email: str) -> bool:
    """Whether any row, soft-deleted or not, holds ``email`` (the column is unique)."""
    result = await db.execute(select(func.count(User.id)).where(User.email == email))
    return result.scalar_one() > 0


async def get_users_by_name(db: AsyncSession, name: str) -> list[User]:
    """
    Get users whose name contains ``name``, ignoring case, newest first.

    Args:
        db: Database session
        name: Name fragment

    Returns:
        List of matching users
    """
    result = await db.execute(
        _live_users()
        .where(User.name.ilike(f"%{name}%"))
        .order_by(User.created_at.desc(), User.id.desc())
    )
    return list(result.scalars().all())


async def create_user(db: AsyncSession, user_in: UserCreate, role: Role = Role.USER) -> User:
    """
    Create new user.

    Args:
        db: Database session
        user_in: User creation schema
        role: Account role

    Returns:
        Created user object
    """
    db_user = User(
        name=user_in.name,
        email=user_in.email,
        avatar=user_in.avatar,
        hashed_password=get_password_hash(user_in.password),
        role=role,
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


async def update_user(
    db: AsyncSession,
    db_user: User,
    user_in: UserUpdate,
) -> User:
    """
    Update existing user.

    Args:
        db: Database session
        db_user: Existing user object
        user_in: User update schema

    Returns:
        Updated user object
    """
    # Explicit nulls leave the stored value unchanged
    update_data = {
        field: value
        for field, value in user_in.model_dump(exclude_unset=True, exclude={"id"}).items()
        if value is not None
    }

    # Hash password if it's being updated
    if "password" in update_data:
        update_data["hashed_password"] = get_password_hash(update_data.pop("password"))

    for field, value in update_data.items():
        setattr(db_user, field, value)

    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


async def authenticate_user(
    db: AsyncSession,
    email: str,
    password: str,
) -> User | None:
    """
    Authenticate user with email and password.

    Args:
        db: Database session
        email: User email
        password: Plain text password

    Returns:
        User object if authentication successful, None otherwise
    """
    user = await get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def search_users(db: AsyncSession, query: UserSearch) -> tuple[list[User], int]:
    """
    Search users by name or email with pagination and sorting.

    Args:
        db: Database session
        query: Search term, sort column, direction and page

    Returns:
        Tuple of (users on the requested page, total number of matches)
    """
    pattern = f"%{query.search_term}%"
    match = or_(User.name.ilike(pattern), User.email.ilike(pattern))

    sort_column = getattr(User, query.sort_by)
    ordering = sort_column.asc() if query.order_by == "asc" else sort_column.desc()

    result = await db.execute(
        _live_users()
        .where(match)
        .order_by(ordering, User.id.asc())
        .offset((query.page - 1) * query.page_size)
        .limit(query.page_size)
    )
    total = await db.execute(
        select(func.count(User.id)).where(User.deleted_at.is_(None), match)
    )
    return list(result.scalars().all()), total.scalar_one()


async def soft_delete_user(db: AsyncSession, db_user: User) -> User:
    """
    Mark a user as deleted. The row is kept.

    Args:
        db: Database session
        db_user: User object to delete

    Returns:
        The deleted user object
    """
    db_user.deleted_at = datetime.now(timezone.utc)
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user
