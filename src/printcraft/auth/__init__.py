"""Client authentication."""

from .token_service import AuthError, InvalidTokenError, TokenExpiredError, TokenService

__all__ = ["AuthError", "InvalidTokenError", "TokenExpiredError", "TokenService"]
