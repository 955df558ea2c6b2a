"""
ID generation utilities for polyauthz
Unique identifiers for decisions, audit events and policy rules
"""

import uuid


def generate_decision_id() -> str:
    """Generate decision ID"""
    return f"decision_{uuid.uuid4().hex}"


def generate_audit_id() -> str:
    """Generate audit event ID"""
    return f"audit_{uuid.uuid4()}"


def generate_rule_id(prefix: str = "rule") -> str:
    """Generate attribute or context rule ID"""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
