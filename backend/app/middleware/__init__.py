"""HTTP middleware."""

from app.middleware.auth_gate import AuthGateMiddleware

__all__ = ["AuthGateMiddleware"]
