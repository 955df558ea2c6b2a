"""
Constants for the polyauthz decision engine

Centralized identifiers for evaluators, decision reasons,
policy change kinds and audit event types.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "polyauthz"
SERVICE_VERSION: Final[str] = "0.1.0"

# =============================================================================
# EVALUATORS
# =============================================================================

class EvaluatorNames:
    """Names of the access-control model evaluators"""
    RBAC: Final[str] = "rbac"
    DAC: Final[str] = "dac"
    ABAC: Final[str] = "abac"
    MAC: Final[str] = "mac"
    RUBAC: Final[str] = "rubac"
    
    # Evaluators that can be switched on per resource type
    FINE_GRAINED: Final[Tuple[str, ...]] = (RBAC, DAC, ABAC)


# =============================================================================
# DECISION REASONS
# =============================================================================

class Reasons:
    """Reason strings returned to callers and written to the audit trail"""
    UNKNOWN_ENTITY: Final[str] = "unknown principal or resource"
    DEFAULT_DENY: Final[str] = "no evaluator granted access"
    ATTRIBUTE_TIMEOUT: Final[str] = "attribute fetch timed out"
    EVALUATOR_ERROR: Final[str] = "evaluator failed"
    
    OWNER: Final[str] = "owner"
    NO_LABEL: Final[str] = "resource carries no security label"
    NO_ROLE_GRANT: Final[str] = "no role grants action"
    NO_ACL_MATCH: Final[str] = "no matching ACL entry"
    NO_ATTRIBUTE_RULES: Final[str] = "no attribute rules registered"
    NO_ATTRIBUTE_MATCH: Final[str] = "no attribute rule matched"
    NO_BLOCKING_RULE: Final[str] = "no blocking rule matched"


# =============================================================================
# POLICY CHANGE KINDS
# =============================================================================

class ChangeKinds:
    """Kinds of Policy Model mutation recorded in the change log"""
    ROLE_ADDED: Final[str] = "role_added"
    PERMISSION_GRANTED: Final[str] = "permission_granted"
    PERMISSION_REVOKED: Final[str] = "permission_revoked"
    ROLE_ASSIGNED: Final[str] = "role_assigned"
    ROLE_UNASSIGNED: Final[str] = "role_unassigned"
    ACL_ENTRY_ADDED: Final[str] = "acl_entry_added"
    ACL_ENTRY_REMOVED: Final[str] = "acl_entry_removed"
    ATTRIBUTE_RULE_ADDED: Final[str] = "attribute_rule_added"
    ATTRIBUTE_RULE_REMOVED: Final[str] = "attribute_rule_removed"
    RUBAC_RULE_ADDED: Final[str] = "rubac_rule_added"
    RUBAC_RULE_REMOVED: Final[str] = "rubac_rule_removed"
    CLEARANCE_SET: Final[str] = "clearance_set"
    CLEARANCE_CLEARED: Final[str] = "clearance_cleared"


# =============================================================================
# AUDIT EVENT TYPES
# =============================================================================

class AuditEventTypes:
    """Audit event type identifiers"""
    DECISION: Final[str] = "authorization_decision"
    CACHED_DECISION: Final[str] = "authorization_decision_cached"


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCodes:
    """Standardized error codes for the decision engine"""
    AUTHZ_ERROR: Final[str] = "AUTHZ_ERROR"
    NOT_FOUND: Final[str] = "NOT_FOUND"
    ATTRIBUTE_TIMEOUT: Final[str] = "ATTRIBUTE_TIMEOUT"
    POLICY_ERROR: Final[str] = "POLICY_ERROR"
    ACL_CONFLICT: Final[str] = "ACL_CONFLICT"
    POLICY_VALIDATION_ERROR: Final[str] = "POLICY_VALIDATION_ERROR"
    CONDITION_ERROR: Final[str] = "CONDITION_ERROR"
    AUDIT_WRITE_FAILURE: Final[str] = "AUDIT_WRITE_FAILURE"
