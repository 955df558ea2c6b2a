"""
polyauthz
Pluggable authorization decision engine combining RBAC, DAC, ABAC, MAC and RuBAC
"""

__version__ = "0.1.0"

# Core exports
from .config import EngineConfig, ConflictResolution, get_engine_config, update_engine_config
from .logconfig import configure_logging

# Errors
from .exceptions import (
    AuthzError, NotFoundError, ConflictError, AttributeTimeoutError,
    AuditWriteFailure, PolicyError, PolicyValidationError, ConditionEvaluationError,
)

# Policy Model
from .policy import (
    SecurityLabel, ACLEffect, ACLEntry, Role, Subject, Resource,
    RequestContext, Verdict, VerdictDecision, Decision,
    PolicyCondition, ConditionOperator, AttributeRule, RuBACRule, MatchMode,
    block_outside_hours, block_networks, allow_only_networks, rate_limit,
    PolicyStore, PolicySnapshot, PolicyChange,
)

# Evaluators
from .evaluators import (
    Evaluator, RBACEvaluator, DACEvaluator, ABACEvaluator, MACEvaluator, RuBACEvaluator,
)

# Engine components
from .attributes import AttributeStore, InMemoryAttributeStore, EntityDirectory, EntityResolver
from .cache import DecisionCache, build_cache_key
from .audit import AuditEvent, AuditRecorder, InMemoryAuditStorage
from .ratelimit import SlidingWindowCounter
from .engine import AuthorizationEngine, build_engine, get_authorization_engine, authorize

__all__ = [
    # Config
    "EngineConfig",
    "ConflictResolution",
    "get_engine_config",
    "update_engine_config",
    "configure_logging",

    # Errors
    "AuthzError",
    "NotFoundError",
    "ConflictError",
    "AttributeTimeoutError",
    "AuditWriteFailure",
    "PolicyError",
    "PolicyValidationError",
    "ConditionEvaluationError",

    # Policy Model
    "SecurityLabel",
    "ACLEffect",
    "ACLEntry",
    "Role",
    "Subject",
    "Resource",
    "RequestContext",
    "Verdict",
    "VerdictDecision",
    "Decision",
    "PolicyCondition",
    "ConditionOperator",
    "AttributeRule",
    "RuBACRule",
    "MatchMode",
    "block_outside_hours",
    "block_networks",
    "allow_only_networks",
    "rate_limit",
    "PolicyStore",
    "PolicySnapshot",
    "PolicyChange",

    # Evaluators
    "Evaluator",
    "RBACEvaluator",
    "DACEvaluator",
    "ABACEvaluator",
    "MACEvaluator",
    "RuBACEvaluator",

    # Engine
    "AttributeStore",
    "InMemoryAttributeStore",
    "EntityDirectory",
    "EntityResolver",
    "DecisionCache",
    "build_cache_key",
    "AuditEvent",
    "AuditRecorder",
    "InMemoryAuditStorage",
    "SlidingWindowCounter",
    "AuthorizationEngine",
    "build_engine",
    "get_authorization_engine",
    "authorize",
]
