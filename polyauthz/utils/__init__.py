"""
Utility functions for polyauthz
ID generation, validation, and hashing helpers
"""

from .ids import generate_decision_id, generate_audit_id, generate_rule_id
from .hashing import secure_hash, hash_string, create_data_fingerprint, HashChain, HashError
from .validators import validate_identifier, validate_action, validate_role_name

__all__ = [
    # ID generation
    "generate_decision_id",
    "generate_audit_id",
    "generate_rule_id",
    # Hashing
    "secure_hash",
    "hash_string",
    "create_data_fingerprint",
    "HashChain",
    "HashError",
    # Validators
    "validate_identifier",
    "validate_action",
    "validate_role_name",
]
