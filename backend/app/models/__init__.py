"""SQLAlchemy database models."""

from app.models.user import Role, User

__all__ = [
    "Role",
    "User",
]
