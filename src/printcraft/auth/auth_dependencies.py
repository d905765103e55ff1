"""Common authentication dependencies for FastAPI routers."""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..api.errors import unauthorized_error
from ..domain.models import Principal
from ..logging import get_logger
from .token_service import InvalidTokenError, TokenExpiredError, TokenService

security = HTTPBearer(auto_error=False)
logger = get_logger(__name__)


def get_token_service(request: Request) -> TokenService:
    try:
        return request.app.state.token_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover
        raise RuntimeError("TokenService is not configured") from exc


def require_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    service: TokenService = Depends(get_token_service),
) -> Principal:
    if credentials is None:
        raise unauthorized_error("missing bearer token")
    try:
        return service.verify(credentials.credentials)
    except TokenExpiredError as exc:
        logger.info("auth.token.expired", path=request.url.path)
        raise unauthorized_error("token expired") from exc
    except InvalidTokenError as exc:
        logger.warning("auth.token.invalid", path=request.url.path, reason=str(exc))
        raise unauthorized_error("invalid token") from exc


__all__ = ["get_token_service", "require_principal", "security"]
