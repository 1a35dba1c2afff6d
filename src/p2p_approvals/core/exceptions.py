"""Workflow exception hierarchy.

    WorkflowError (base)
    +-- ConfigurationError   no usable rule/path/steps; admin must fix setup
    +-- AuthorizationError   wrong actor or segregation-of-duties violation
    +-- StateError           task/transaction not in the required state
    |   +-- NotFoundError    referenced entity does not exist
    +-- ValidationError      bad input (missing comment, bad date range, overlap)
    +-- InternalError        unexpected fault (database, bug) behind an entry point

Action entry points convert every WorkflowError into a failed ActionResult.
"""

from typing import Any


class WorkflowError(Exception):
    """Base class for approval workflow errors."""

    code: str = "WORKFLOW_ERROR"

    def __init__(self, message: str, **details: Any):
        """Initialize error.

        Args:
            message: Human-readable message returned to callers
            details: Structured context for logging
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class ConfigurationError(WorkflowError):
    """Approval routing is misconfigured."""

    code = "CONFIGURATION_ERROR"


class AuthorizationError(WorkflowError):
    """Actor may not perform the requested action."""

    code = "AUTHORIZATION_ERROR"


class StateError(WorkflowError):
    """Entity is not in the state the action requires."""

    code = "STATE_ERROR"


class NotFoundError(StateError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"


class ValidationError(WorkflowError):
    """Action input failed validation."""

    code = "VALIDATION_ERROR"


class InternalError(WorkflowError):
    """Unexpected fault converted at a workflow entry point."""

    code = "INTERNAL_ERROR"
