"""Approval delegation API endpoints."""

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    WorkflowError,
)
from p2p_approvals.infrastructure.database.session import get_async_db
from p2p_approvals.services.approval import (
    ApprovalController,
    DelegationCreate,
    DelegationDetail,
    DelegationService,
    get_approval_controller,
)
from p2p_approvals.services.auth import CurrentActor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/delegations", tags=["Delegations"])


def get_delegation_service(
    db: Annotated[AsyncSession, Depends(get_async_db)],
    controller: Annotated[ApprovalController, Depends(get_approval_controller)],
) -> DelegationService:
    """Build a delegation service sharing the controller's workflow config."""
    return DelegationService(db, controller.config)


Delegations = Annotated[DelegationService, Depends(get_delegation_service)]


def _http_error(error: WorkflowError) -> HTTPException:
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, AuthorizationError):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=error.message)


@router.post("", response_model=DelegationDetail, status_code=status.HTTP_201_CREATED)
async def create_delegation(
    data: DelegationCreate, actor: CurrentActor, service: Delegations
) -> DelegationDetail:
    """Delegate the caller's approvals for a date range.

    Privileged users may create delegations on behalf of another approver.
    """
    try:
        delegation = await service.create_delegation(data, actor)
        await service.session.commit()
    except WorkflowError as e:
        await service.session.rollback()
        raise _http_error(e)
    return delegation


@router.get("", response_model=list[DelegationDetail])
async def list_delegations(
    actor: CurrentActor,
    service: Delegations,
    role: Literal["delegator", "delegate"] = Query(
        "delegator", description="Delegations given away or received"
    ),
    active_only: bool = Query(True, description="Only active delegations"),
) -> list[DelegationDetail]:
    """List the caller's delegations."""
    return await service.list_delegations(
        actor.user_id, role=role, active_only=active_only
    )


@router.post("/{delegation_id}/deactivate", response_model=DelegationDetail)
async def deactivate_delegation(
    delegation_id: str, actor: CurrentActor, service: Delegations
) -> DelegationDetail:
    """Deactivate a delegation owned by the caller."""
    try:
        delegation = await service.deactivate_delegation(delegation_id, actor)
        await service.session.commit()
    except WorkflowError as e:
        await service.session.rollback()
        raise _http_error(e)
    return delegation
