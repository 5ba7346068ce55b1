"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1 import auth, users

api_router = APIRouter()

# Authentication and user management share the /users prefix
api_router.include_router(auth.router, prefix="/users", tags=["authentication"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
