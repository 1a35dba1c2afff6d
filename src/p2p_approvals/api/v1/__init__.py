"""API v1 module."""

from fastapi import APIRouter

from p2p_approvals.api.v1.endpoints import approvals, delegations

api_router = APIRouter()

# Include routers
api_router.include_router(approvals.router)
api_router.include_router(delegations.router)
