"""
Custom Exceptions for the polyauthz decision engine

Provides a unified exception hierarchy for policy administration,
entity resolution, attribute fetching, and audit recording.
"""

from typing import Optional, Dict, Any

from .constants import ErrorCodes


class AuthzError(Exception):
    """
    Base exception for all decision engine errors.
    
    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context about the error
    """
    
    def __init__(
        self,
        message: str,
        error_code: str = ErrorCodes.AUTHZ_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# LOOKUP ERRORS
# =============================================================================

class NotFoundError(AuthzError):
    """Raised when a subject, resource or role is unknown"""
    
    def __init__(
        self,
        kind: str,
        identifier: str,
    ):
        super().__init__(
            message=f"Unknown {kind}: {identifier}",
            error_code=ErrorCodes.NOT_FOUND,
            details={"kind": kind, "id": identifier}
        )
        self.kind = kind
        self.identifier = identifier


class AttributeTimeoutError(AuthzError):
    """Raised when an attribute fetch exceeds its time bound"""
    
    def __init__(
        self,
        kind: str,
        identifier: str,
        timeout_seconds: Optional[float] = None
    ):
        details: Dict[str, Any] = {"kind": kind, "id": identifier}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=f"Attribute fetch timed out for {kind}: {identifier}",
            error_code=ErrorCodes.ATTRIBUTE_TIMEOUT,
            details=details
        )


# =============================================================================
# POLICY ERRORS
# =============================================================================

class PolicyError(AuthzError):
    """Base exception for policy administration errors"""
    
    def __init__(
        self,
        message: str,
        error_code: str = ErrorCodes.POLICY_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class ConflictError(PolicyError):
    """Raised when an ACL write would duplicate a (grantee, action) pair"""
    
    def __init__(
        self,
        resource_id: str,
        grantee: str,
        action: str
    ):
        super().__init__(
            message=f"ACL entry for ({grantee}, {action}) already exists on {resource_id}",
            error_code=ErrorCodes.ACL_CONFLICT,
            details={"resource_id": resource_id, "grantee": grantee, "action": action}
        )


class PolicyValidationError(PolicyError):
    """Raised when a policy object is malformed"""
    
    def __init__(
        self,
        message: str,
        field: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        super().__init__(message, ErrorCodes.POLICY_VALIDATION_ERROR, details)


class ConditionEvaluationError(PolicyError):
    """Raised when a condition cannot be evaluated against the supplied attributes"""

    def __init__(
        self,
        attribute: str,
        operator: str,
        reason: str
    ):
        super().__init__(
            message=f"Cannot evaluate {attribute} {operator}: {reason}",
            error_code=ErrorCodes.CONDITION_ERROR,
            details={"attribute": attribute, "operator": operator}
        )


# =============================================================================
# AUDIT ERRORS
# =============================================================================

class AuditWriteFailure(AuthzError):
    """Raised by audit storage when an event cannot be persisted"""
    
    def __init__(
        self,
        message: str = "Failed to write audit event",
        event_id: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if event_id:
            details["event_id"] = event_id
        super().__init__(message, ErrorCodes.AUDIT_WRITE_FAILURE, details)
