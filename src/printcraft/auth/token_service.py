"""Bearer token verification for client requests.

Tokens are issued by the account service and signed with a shared HS256 key.
The ``sub`` claim is the owner id and the ``tier`` claim (``standard`` or
``premium``) selects priority and quota.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from jwt import ExpiredSignatureError
from jwt import InvalidTokenError as PyJWTInvalidTokenError

from ..domain.models import JobPriority, Principal


class AuthError(Exception):
    """Base class for auth failures."""


class InvalidTokenError(AuthError):
    """Raised when token cannot be decoded."""


class TokenExpiredError(AuthError):
    """Raised when token is expired."""


@dataclass(slots=True)
class TokenService:
    signing_key: str
    algorithm: str = "HS256"

    def issue_token(
        self,
        owner_id: str,
        *,
        tier: JobPriority = JobPriority.STANDARD,
        ttl: timedelta = timedelta(hours=1),
        issued_at: datetime | None = None,
    ) -> str:
        """Sign a token for ``owner_id``; used by scripts and tests."""
        now = issued_at or datetime.now(tz=timezone.utc)
        payload: dict[str, Any] = {
            "sub": owner_id,
            "tier": tier.value,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self.signing_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Principal:
        """Decode the token and return the caller."""
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.signing_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("Token expired") from exc
        except PyJWTInvalidTokenError as exc:
            raise InvalidTokenError("Invalid token") from exc

        owner_id = payload.get("sub")
        if not isinstance(owner_id, str) or not owner_id:
            raise InvalidTokenError("Token subject is missing")
        try:
            tier = JobPriority(str(payload.get("tier") or JobPriority.STANDARD.value).lower())
        except ValueError as exc:
            raise InvalidTokenError("Unknown subscription tier") from exc
        return Principal(owner_id=owner_id, tier=tier)


__all__ = ["AuthError", "InvalidTokenError", "TokenExpiredError", "TokenService"]
