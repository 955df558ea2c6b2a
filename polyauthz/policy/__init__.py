"""
Policy Model for polyauthz
Entities, rules and the versioned policy store
"""

from .models import (
    SecurityLabel, ACLEffect, ACLEntry, Role, Subject, Resource,
    RequestContext, VerdictDecision, Verdict, Decision,
)
from .conditions import AttributeSource, ConditionOperator, PolicyCondition
from .rules import (
    AttributeRule, RuBACRule, MatchMode,
    block_outside_hours, block_networks, allow_only_networks, rate_limit,
)
from .store import PolicyStore, PolicySnapshot, PolicyChange

__all__ = [
    "SecurityLabel",
    "ACLEffect",
    "ACLEntry",
    "Role",
    "Subject",
    "Resource",
    "RequestContext",
    "VerdictDecision",
    "Verdict",
    "Decision",
    "AttributeSource",
    "ConditionOperator",
    "PolicyCondition",
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
]
