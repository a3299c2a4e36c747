"""
Core authentication.

Resolves the calling subscriber from a JWT bearer token issued by the
identity service. Token issuance beyond what tests and tooling need lives in
that service, not here.
"""

import secrets
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, cast

import structlog
from authlib.jose import JoseError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from creatorhub.platform.settings import get_settings

logger = structlog.get_logger(__name__)

# FastAPI Security schemes
bearer_scheme = HTTPBearer(auto_error=False)

# ============================================
# Models
# ============================================


class TokenType(str, Enum):
    """Token types."""

    ACCESS = "access"
    REFRESH = "refresh"


class UserInfo(BaseModel):
    """User information from auth.

    User IDs are stored as strings for JWT/HTTP compatibility; the subscriber
    id used by billing is ``user_id``.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    email: EmailStr | None = None
    username: str | None = None
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)


# ============================================
# JWT
# ============================================


class JWTService:
    """Simplified JWT service using Authlib."""

    def __init__(
        self,
        secret: str | None = None,
        algorithm: str | None = None,
        issuer: str | None = None,
    ):
        settings = get_settings()
        self.secret = secret or settings.jwt.secret_key
        self.algorithm = algorithm or settings.jwt.algorithm
        self.issuer = issuer or settings.jwt.issuer
        self.header = {"alg": self.algorithm}

    def create_access_token(
        self,
        subject: str,
        additional_claims: dict[str, Any] | None = None,
        expire_minutes: int | None = None,
    ) -> str:
        """Create access token."""
        data = {"sub": subject, "type": TokenType.ACCESS.value, "iss": self.issuer}
        if additional_claims:
            data.update(additional_claims)

        expires_delta = timedelta(
            minutes=expire_minutes or get_settings().jwt.access_token_expire_minutes
        )
        return self._create_token(data, expires_delta)

    def _create_token(self, data: dict, expires_delta: timedelta) -> str:
        """Internal token creation."""
        to_encode = data.copy()
        now = datetime.now(UTC)
        to_encode.update(
            {
                "exp": int((now + expires_delta).timestamp()),
                "iat": int(now.timestamp()),
                "jti": secrets.token_urlsafe(16),
            }
        )

        token = jwt.encode(self.header, to_encode, self.secret)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def verify_token(self, token: str, expected_type: TokenType | None = None) -> dict[str, Any]:
        """Verify and decode token.

        Raises:
            HTTPException: If token is invalid, expired, or has wrong type
        """
        try:
            claims_raw = jwt.decode(token, self.secret)
            claims_raw.validate()
            claims = cast(dict[str, Any], dict(claims_raw))

            if expected_type:
                token_type = claims.get("type")
                if token_type != expected_type.value:
                    raise JoseError(
                        f"Invalid token type. Expected {expected_type.value}, got {token_type}"
                    )

            if not claims.get("sub"):
                raise JoseError("Token has no subject")

            return claims
        except JoseError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {e}",
                headers={"WWW-Authenticate": "Bearer"},
            )


_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    """Get the process-wide JWT service."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service


def reset_jwt_service() -> None:
    """Forget the cached JWT service (mainly for testing)."""
    global _jwt_service
    _jwt_service = None


# ============================================
# Dependencies
# ============================================


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserInfo:
    """Get current authenticated user from a Bearer token or HttpOnly cookie."""
    service = get_jwt_service()

    if credentials and credentials.credentials:
        claims = service.verify_token(credentials.credentials, TokenType.ACCESS)
        return _claims_to_user_info(claims)

    access_token = request.cookies.get("access_token")
    if access_token:
        claims = service.verify_token(access_token, TokenType.ACCESS)
        return _claims_to_user_info(claims)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _claims_to_user_info(claims: dict) -> UserInfo:
    """Convert JWT claims to UserInfo."""
    return UserInfo(
        user_id=claims.get("sub", ""),
        email=claims.get("email"),
        username=claims.get("username"),
        roles=claims.get("roles", []),
        permissions=claims.get("permissions", []),
    )


__all__ = [
    "TokenType",
    "UserInfo",
    "JWTService",
    "get_jwt_service",
    "reset_jwt_service",
    "get_current_user",
]
