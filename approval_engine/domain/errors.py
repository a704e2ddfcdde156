"""Domain Errors - Centralized Error Hierarchy

Engine operations return these inside an ActionResult instead of raising them.
Repositories raise them the usual way.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a response/audit dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Engine action failures
class UnauthorizedError(DomainError):
    """Actor lacks the required role or fails an ABAC condition"""
    error_code = "UNAUTHORIZED"
    recoverable = True


class InvalidActionError(DomainError):
    """Action not valid for the instance's current state"""
    error_code = "INVALID_ACTION"
    recoverable = True


class StaleActionError(DomainError):
    """Action submitted out of order or against an outdated instance copy"""
    error_code = "STALE_ACTION"
    recoverable = True


class CorruptGraphError(DomainError):
    """Structural invariant violated at runtime; instance halted for an operator"""
    error_code = "CORRUPT_GRAPH"


class ValidationFailedError(DomainError):
    """Template failed validation and cannot be published"""
    error_code = "VALIDATION_FAILED"


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    """Workflow template not found"""
    error_code = "TEMPLATE_NOT_FOUND"


class InstanceNotFoundError(NotFoundError):
    """Workflow instance not found"""
    error_code = "INSTANCE_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict (e.g., concurrent modification)"""
    error_code = "CONFLICT"


class ConcurrencyError(ConflictError):
    """Optimistic concurrency conflict"""
    error_code = "CONCURRENCY_CONFLICT"
    recoverable = True


class AlreadyExistsError(ConflictError):
    """Resource already exists"""
    error_code = "ALREADY_EXISTS"
