"""
Domain errors for Contract Desk.

Every error carries a machine-readable code and an HTTP-style status code so
the calling API layer can map it to a response without inspecting messages.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import LimitCheckResult


class ContractDeskError(Exception):
    """Base exception for all domain errors."""

    code = "APP_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ContractDeskError):
    """Malformed caller input (title, message content, contract dates)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ContractDeskError):
    """Referenced contract, item or ticket is missing or outside the tenant."""

    code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(ContractDeskError):
    """Caller is not allowed to perform the operation."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidReferenceError(ContractDeskError):
    """A contract item reference string could not be parsed."""

    code = "INVALID_REFERENCE"
    status_code = 400


class LimitExceededError(ContractDeskError):
    """
    Business-rule denial: the contract item has used up its quota.

    This is an expected outcome, not a system failure. The evaluator result
    is attached so callers can render current/limit counts inline.
    """

    code = "LIMIT_EXCEEDED"
    status_code = 409

    def __init__(self, result: "LimitCheckResult"):
        message = result.message or (
            f"Limit reached: {result.current_count}/{result.limit} tickets "
            f"for this {result.period} period."
        )
        super().__init__(message)
        self.result = result
