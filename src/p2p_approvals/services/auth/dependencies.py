"""Authentication dependencies for FastAPI."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from p2p_approvals.core.config import get_settings
from p2p_approvals.services.approval.schemas import ActorContext
from p2p_approvals.services.auth.jwt_service import JWTService, get_jwt_service

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    jwt_service: Annotated[JWTService, Depends(get_jwt_service)],
) -> ActorContext:
    """Get the acting employee from the bearer JWT.

    Args:
        request: Incoming request, used for the client address
        credentials: Bearer token from request
        jwt_service: JWT service for token verification

    Returns:
        ActorContext for the token subject

    Raises:
        HTTPException: If token is missing or invalid
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = jwt_service.verify_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return ActorContext(
        user_id=payload.sub,
        roles=payload.roles,
        ip_address=request.client.host if request.client else None,
    )


async def require_privileged(
    actor: Annotated[ActorContext, Depends(get_current_actor)],
) -> ActorContext:
    """Dependency requiring one of the configured privileged roles.

    Raises:
        HTTPException: If the actor holds no privileged role
    """
    if not actor.is_privileged(get_settings().approval_privileged_roles):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Privileged role required",
        )
    return actor


# Type aliases for dependency injection
CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
PrivilegedActor = Annotated[ActorContext, Depends(require_privileged)]
