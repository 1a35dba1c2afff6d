"""Transaction approval API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from p2p_approvals.core.exceptions import NotFoundError, WorkflowError
from p2p_approvals.services.approval import (
    ActionResult,
    ApprovalController,
    ApprovalStatusDetail,
    BulkActionResult,
    MatchContext,
    TaskDetail,
    TransactionType,
    get_approval_controller,
)
from p2p_approvals.services.approval.schemas import (
    BulkActionRequest,
    ExceptionOverrideRequest,
    SubmitRequest,
    TaskActionRequest,
    TokenActionRequest,
)
from p2p_approvals.services.auth import CurrentActor, PrivilegedActor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/approvals", tags=["Approvals"])

Controller = Annotated[ApprovalController, Depends(get_approval_controller)]


@router.post("/submit", response_model=ActionResult)
async def submit_transaction(
    request: SubmitRequest, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Route a transaction through rule matching and create the first tasks."""
    return await controller.submit(request.transaction_type, request.transaction_id, actor)


@router.post("/resubmit", response_model=ActionResult)
async def resubmit_transaction(
    request: SubmitRequest, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Reset a rejected or draft transaction and submit it again."""
    return await controller.resubmit(
        request.transaction_type, request.transaction_id, actor
    )


@router.post("/recall", response_model=ActionResult)
async def recall_transaction(
    request: SubmitRequest, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Withdraw a pending transaction. Only its submitter may recall it."""
    return await controller.recall(request.transaction_type, request.transaction_id, actor)


@router.post("/approve", response_model=ActionResult)
async def approve_task(
    request: TaskActionRequest, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Approve a task, identified by task ID or by transaction reference."""
    return await controller.approve(
        actor,
        task_id=request.task_id,
        transaction_type=request.transaction_type,
        transaction_id=request.transaction_id,
        comment=request.comment,
        method=request.method,
    )


@router.post("/reject", response_model=ActionResult)
async def reject_task(
    request: TaskActionRequest, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Reject a task. A comment is required."""
    return await controller.reject(
        actor,
        task_id=request.task_id,
        transaction_type=request.transaction_type,
        transaction_id=request.transaction_id,
        comment=request.comment,
        method=request.method,
    )


@router.post("/approve-exception", response_model=ActionResult)
async def approve_exception(
    request: ExceptionOverrideRequest, actor: PrivilegedActor, controller: Controller
) -> ActionResult:
    """Override a detected transaction exception.

    Requires: a privileged role
    """
    return await controller.approve_exception(
        request.transaction_type, request.transaction_id, actor, request.comment
    )


@router.post("/bulk", response_model=BulkActionResult)
async def bulk_action(
    request: BulkActionRequest, actor: CurrentActor, controller: Controller
) -> BulkActionResult:
    """Approve or reject several tasks; each task succeeds or fails on its own."""
    return await controller.bulk_action(
        request.task_ids, request.action, actor, comment=request.comment
    )


@router.post("/token-action", response_model=ActionResult)
async def token_action(
    body: TokenActionRequest, request: Request, controller: Controller
) -> ActionResult:
    """Act on a task through an emailed approval link.

    No bearer token is needed: the approval token identifies the task and
    its approver.
    """
    return await controller.token_action(
        body.token,
        body.action,
        comment=body.comment,
        ip_address=request.client.host if request.client else None,
    )


@router.post("/preview-match", response_model=ActionResult)
async def preview_match(
    context: MatchContext, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Show which rule and path a transaction would get, without submitting."""
    return await controller.preview_match(context)


@router.post("/debug-match", response_model=ActionResult)
async def debug_match(
    context: MatchContext, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """Evaluate every active rule and return the per-criterion trace."""
    return await controller.debug_match(context)


@router.get("/paths/{path_id}/steps", response_model=ActionResult)
async def list_path_steps(
    path_id: str, actor: CurrentActor, controller: Controller
) -> ActionResult:
    """List the active steps of an approval path."""
    result = await controller.list_path_steps(path_id)
    if not result.success:
        code = result.data.get("code")
        raise HTTPException(
            status_code=(
                status.HTTP_404_NOT_FOUND
                if code == NotFoundError.code
                else status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
            detail=result.message,
        )
    return result


@router.get("/pending", response_model=list[TaskDetail])
async def list_pending_tasks(
    actor: CurrentActor,
    controller: Controller,
    transaction_type: TransactionType | None = Query(
        None, description="Filter by transaction type"
    ),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(100, ge=1, le=500, description="Maximum records"),
) -> list[TaskDetail]:
    """List tasks the caller may act on, as approver or acting approver."""
    try:
        return await controller.list_pending_tasks(
            actor.user_id, transaction_type=transaction_type, skip=skip, limit=limit
        )
    except WorkflowError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message
        )


@router.get("/{transaction_type}/{transaction_id}", response_model=ApprovalStatusDetail)
async def get_approval_status(
    transaction_type: TransactionType,
    transaction_id: str,
    actor: CurrentActor,
    controller: Controller,
) -> ApprovalStatusDetail:
    """Get a transaction's approval state, tasks and history."""
    try:
        detail = await controller.get_approval_status(transaction_type, transaction_id)
    except WorkflowError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message
        )
    if detail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction {transaction_type.value}:{transaction_id} not found",
        )
    return detail
