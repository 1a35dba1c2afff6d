"""Authentication services module."""

from p2p_approvals.services.auth.dependencies import (
    CurrentActor,
    PrivilegedActor,
    get_current_actor,
    require_privileged,
)
from p2p_approvals.services.auth.jwt_service import (
    JWTService,
    TokenPayload,
    get_jwt_service,
)

__all__ = [
    # JWT
    "JWTService",
    "TokenPayload",
    "get_jwt_service",
    # Dependencies
    "get_current_actor",
    "require_privileged",
    "CurrentActor",
    "PrivilegedActor",
]
