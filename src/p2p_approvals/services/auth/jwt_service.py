"""JWT token service for API authentication."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from pydantic import BaseModel

from p2p_approvals.core.config import get_settings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # Employee ID
    exp: datetime
    iat: datetime
    type: str  # only "access" is accepted
    roles: list[str] = []


class JWTService:
    """Service for creating and validating JWT tokens."""

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str = "HS256",
        access_token_expire_minutes: int | None = None,
    ):
        """Initialize JWT service.

        Args:
            secret_key: Secret key for signing tokens
            algorithm: JWT algorithm (default: HS256)
            access_token_expire_minutes: Access token expiration in minutes
        """
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = (
            access_token_expire_minutes or settings.access_token_expire_minutes
        )

    def _encode(self, subject: str, token_type: str, lifetime: timedelta, **claims: Any) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "exp": now + lifetime,
            "iat": now,
            "type": token_type,
            **claims,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_access_token(
        self,
        subject: str,
        roles: list[str] | None = None,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        """Create an access token for an employee.

        Args:
            subject: Employee ID
            roles: Employee roles
            extra_claims: Additional claims to include

        Returns:
            Encoded JWT access token
        """
        return self._encode(
            subject,
            "access",
            timedelta(minutes=self.access_token_expire_minutes),
            roles=roles or [],
            **(extra_claims or {}),
        )

    def verify_token(self, token: str) -> TokenPayload | None:
        """Verify and decode a JWT token.

        Args:
            token: JWT token to verify

        Returns:
            TokenPayload if valid, None if invalid
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            return TokenPayload(**payload)
        except JWTError as e:
            logger.warning(f"JWT verification failed: {e}")
            return None

    def verify_access_token(self, token: str) -> TokenPayload | None:
        """Verify an access token specifically."""
        payload = self.verify_token(token)
        if payload and payload.type == "access":
            return payload
        return None


# Singleton instance
_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    """Get or create JWT service singleton."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
