"""Test cases for the FastAPI application and approval endpoints."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from p2p_approvals.api.v1.endpoints.delegations import get_delegation_service
from p2p_approvals.core.exceptions import (
    AuthorizationError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from p2p_approvals.main import app
from p2p_approvals.services.approval import (
    ActionResult,
    ApprovalController,
    ApprovalStatusDetail,
    BulkActionResult,
    DelegationDetail,
    DelegationService,
    get_approval_controller,
)
from p2p_approvals.services.approval.schemas import (
    ApprovalMethod,
    ApprovalStatus,
    TaskAction,
    TransactionType,
)
from p2p_approvals.services.auth import JWTService, get_jwt_service

SECRET = "test-secret-key"


@pytest.fixture
def controller():
    """Controller double used by the approval endpoints."""
    return AsyncMock(spec=ApprovalController)


@pytest.fixture
def delegation_service():
    """Delegation service double with a mocked session."""
    service = AsyncMock(spec=DelegationService)
    service.session = AsyncMock()
    return service


@pytest.fixture
def jwt_service():
    return JWTService(secret_key=SECRET)


@pytest.fixture
def client(controller, delegation_service, jwt_service):
    """Test client with workflow dependencies overridden."""
    app.dependency_overrides[get_approval_controller] = lambda: controller
    app.dependency_overrides[get_delegation_service] = lambda: delegation_service
    app.dependency_overrides[get_jwt_service] = lambda: jwt_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(jwt_service):
    token = jwt_service.create_access_token("EMP-MGR", roles=["approver"])
    return {"Authorization": f"Bearer {token}"}


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check_returns_ok(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "timestamp" in data


class TestAuthentication:
    """Test bearer token handling."""

    def test_missing_token(self, client: TestClient):
        response = client.get("/api/v1/approvals/pending")

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_invalid_token(self, client: TestClient):
        response = client.get(
            "/api/v1/approvals/pending", headers={"Authorization": "Bearer nonsense"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    def test_non_access_token_rejected(self, client: TestClient):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "EMP-MGR", "exp": now + timedelta(days=7), "iat": now, "type": "refresh"},
            SECRET,
            algorithm="HS256",
        )

        response = client.get(
            "/api/v1/approvals/pending", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    def test_access_token_claims(self, jwt_service):
        token = jwt_service.create_access_token("EMP-MGR", roles=["admin"])

        payload = jwt_service.verify_access_token(token)

        assert payload.sub == "EMP-MGR"
        assert payload.roles == ["admin"]
        assert payload.type == "access"
        assert payload.exp - payload.iat == timedelta(
            minutes=jwt_service.access_token_expire_minutes
        )


class TestApprovalEndpoints:
    """Test approval action routing."""

    def test_submit(self, client, controller, auth_headers):
        controller.submit.return_value = ActionResult(
            success=True, status="pending_approval", data={"first_approver": "EMP-DIR"}
        )

        response = client.post(
            "/api/v1/approvals/submit",
            json={"transaction_type": "purchase_order", "transaction_id": "PO-1"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "pending_approval"
        args = controller.submit.await_args.args
        assert args[0] == TransactionType.PURCHASE_ORDER
        assert args[1] == "PO-1"
        assert args[2].user_id == "EMP-MGR"
        assert args[2].roles == ["approver"]

    def test_failed_action_still_200(self, client, controller, auth_headers):
        """Workflow failures come back in the result body."""
        controller.approve.return_value = ActionResult(
            success=False,
            message="Segregation of duties violation",
            data={"code": "AUTHORIZATION_ERROR"},
        )

        response = client.post(
            "/api/v1/approvals/approve",
            json={"task_id": "TSK-1", "comment": "ok", "method": "mobile"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        kwargs = controller.approve.await_args.kwargs
        assert kwargs["task_id"] == "TSK-1"
        assert kwargs["method"] == ApprovalMethod.MOBILE

    def test_reject_by_transaction(self, client, controller, auth_headers):
        controller.reject.return_value = ActionResult(success=True, status="rejected")

        client.post(
            "/api/v1/approvals/reject",
            json={
                "transaction_type": "vendor_bill",
                "transaction_id": "VB-1",
                "comment": "Duplicate",
            },
            headers=auth_headers,
        )

        kwargs = controller.reject.await_args.kwargs
        assert kwargs["transaction_type"] == TransactionType.VENDOR_BILL
        assert kwargs["comment"] == "Duplicate"

    def test_bulk(self, client, controller, auth_headers):
        controller.bulk_action.return_value = BulkActionResult(success=True)

        response = client.post(
            "/api/v1/approvals/bulk",
            json={"task_ids": ["TSK-1", "TSK-2"], "action": "approve"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        args = controller.bulk_action.await_args.args
        assert args[0] == ["TSK-1", "TSK-2"]
        assert args[1] == TaskAction.APPROVE

    def test_bulk_requires_tasks(self, client, auth_headers):
        response = client.post(
            "/api/v1/approvals/bulk",
            json={"task_ids": [], "action": "approve"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_approve_exception_requires_privilege(self, client, controller, auth_headers):
        response = client.post(
            "/api/v1/approvals/approve-exception",
            json={
                "transaction_type": "vendor_bill",
                "transaction_id": "VB-1",
                "comment": "Price variance accepted",
            },
            headers=auth_headers,
        )

        assert response.status_code == 403
        controller.approve_exception.assert_not_awaited()

    def test_approve_exception_privileged(self, client, controller, jwt_service):
        controller.approve_exception.return_value = ActionResult(success=True)
        token = jwt_service.create_access_token("EMP-ADM", roles=["admin"])

        response = client.post(
            "/api/v1/approvals/approve-exception",
            json={
                "transaction_type": "vendor_bill",
                "transaction_id": "VB-1",
                "comment": "Price variance accepted",
            },
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        args = controller.approve_exception.await_args.args
        assert args[0] == TransactionType.VENDOR_BILL
        assert args[3] == "Price variance accepted"

    def test_token_action_needs_no_bearer(self, client, controller):
        controller.token_action.return_value = ActionResult(success=True, status="approved")

        response = client.post(
            "/api/v1/approvals/token-action",
            json={"token": "a" * 64, "action": "approve"},
        )

        assert response.status_code == 200
        args = controller.token_action.await_args.args
        assert args == ("a" * 64, TaskAction.APPROVE)
        assert controller.token_action.await_args.kwargs["ip_address"] == "testclient"

    def test_preview_match(self, client, controller, auth_headers):
        controller.preview_match.return_value = ActionResult(success=True)

        response = client.post(
            "/api/v1/approvals/preview-match",
            json={"transaction_type": "purchase_order", "amount": "1200.00"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        context = controller.preview_match.await_args.args[0]
        assert str(context.amount) == "1200.00"

    def test_path_steps_not_found(self, client, controller, auth_headers):
        controller.list_path_steps.return_value = ActionResult(
            success=False,
            message="Approval path PTH-X not found",
            data={"code": "NOT_FOUND"},
        )

        response = client.get("/api/v1/approvals/paths/PTH-X/steps", headers=auth_headers)

        assert response.status_code == 404

    def test_path_steps_internal_error(self, client, controller, auth_headers):
        controller.list_path_steps.return_value = ActionResult(
            success=False,
            message="Unexpected error: no such table: path_steps",
            data={"code": "INTERNAL_ERROR"},
        )

        response = client.get("/api/v1/approvals/paths/PTH-1/steps", headers=auth_headers)

        assert response.status_code == 500

    def test_pending_tasks(self, client, controller, auth_headers):
        controller.list_pending_tasks.return_value = []

        response = client.get(
            "/api/v1/approvals/pending?transaction_type=invoice&limit=10",
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == []
        controller.list_pending_tasks.assert_awaited_once_with(
            "EMP-MGR", transaction_type=TransactionType.INVOICE, skip=0, limit=10
        )

    def test_pending_tasks_internal_error(self, client, controller, auth_headers):
        controller.list_pending_tasks.side_effect = InternalError("Unexpected error: db down")

        response = client.get("/api/v1/approvals/pending", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "Unexpected error: db down"

    def test_status(self, client, controller, auth_headers):
        controller.get_approval_status.return_value = ApprovalStatusDetail(
            transaction_type="purchase_order",
            transaction_id="PO-1",
            approval_status=ApprovalStatus.PENDING_APPROVAL,
            current_step=1,
        )

        response = client.get("/api/v1/approvals/purchase_order/PO-1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["approval_status"] == "pending_approval"

    def test_status_not_found(self, client, controller, auth_headers):
        controller.get_approval_status.return_value = None

        response = client.get("/api/v1/approvals/invoice/INV-9", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"] == "Transaction invoice:INV-9 not found"


class TestDelegationEndpoints:
    """Test delegation endpoints and error mapping."""

    def make_detail(self, **overrides) -> DelegationDetail:
        data = {
            "id": "DLG-1",
            "delegator_id": "EMP-MGR",
            "delegate_id": "EMP-DIR",
            "start_date": date(2026, 10, 17),
            "end_date": date(2026, 10, 24),
            "is_active": True,
        }
        data.update(overrides)
        return DelegationDetail(**data)

    def test_create(self, client, delegation_service, auth_headers):
        delegation_service.create_delegation.return_value = self.make_detail()

        response = client.post(
            "/api/v1/delegations",
            json={
                "delegate_id": "EMP-DIR",
                "start_date": "2026-10-17",
                "end_date": "2026-10-24",
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.json()["id"] == "DLG-1"
        delegation_service.session.commit.assert_awaited_once()

    @pytest.mark.parametrize(
        "error, status_code",
        [
            (ValidationError("Cannot delegate to yourself"), 400),
            (AuthorizationError("Not authorized to delegate for another approver"), 403),
        ],
    )
    def test_create_errors(self, client, delegation_service, auth_headers, error, status_code):
        delegation_service.create_delegation.side_effect = error

        response = client.post(
            "/api/v1/delegations",
            json={
                "delegate_id": "EMP-MGR",
                "start_date": "2026-10-17",
                "end_date": "2026-10-24",
            },
            headers=auth_headers,
        )

        assert response.status_code == status_code
        assert response.json()["detail"] == error.message
        delegation_service.session.rollback.assert_awaited_once()

    def test_list(self, client, delegation_service, auth_headers):
        delegation_service.list_delegations.return_value = [self.make_detail()]

        response = client.get(
            "/api/v1/delegations?role=delegate&active_only=false", headers=auth_headers
        )

        assert response.status_code == 200
        delegation_service.list_delegations.assert_awaited_once_with(
            "EMP-MGR", role="delegate", active_only=False
        )

    def test_deactivate_missing(self, client, delegation_service, auth_headers):
        delegation_service.deactivate_delegation.side_effect = NotFoundError(
            "Delegation DLG-9 not found"
        )

        response = client.post("/api/v1/delegations/DLG-9/deactivate", headers=auth_headers)

        assert response.status_code == 404


class TestCORSConfiguration:
    """Test CORS middleware configuration."""

    def test_cors_headers_present(self, client: TestClient):
        response = client.options(
            "/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
