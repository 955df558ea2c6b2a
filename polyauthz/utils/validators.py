"""
Validators for polyauthz

Validation utilities for principal identifiers, resource identifiers,
action names and role names used by the Policy Model.
"""

import re
from typing import Any

from ..exceptions import PolicyValidationError

# =============================================================================
# REGEX PATTERNS
# =============================================================================

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_.:@/-]{1,256}$")
ACTION_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_.:-]{0,63}$")
ROLE_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_.:-]{0,63}$")

# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def _validate(value: Any, pattern: re.Pattern, field_name: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise PolicyValidationError(f"{field_name} is required", field=field_name)
    
    if not isinstance(value, str):
        raise PolicyValidationError(f"{field_name} must be a string", field=field_name)
    
    value = value.strip()
    
    if not pattern.match(value):
        raise PolicyValidationError(
            f"{field_name} contains invalid characters or is too long",
            field=field_name
        )
    
    return value


def validate_identifier(value: Any, field_name: str = "id") -> str:
    """
    Validate a subject, resource or group identifier.
    
    Raises:
        PolicyValidationError: If validation fails
    """
    return _validate(value, IDENTIFIER_PATTERN, field_name)


def validate_action(value: Any, field_name: str = "action") -> str:
    """Validate an action identifier"""
    return _validate(value, ACTION_PATTERN, field_name)


def validate_role_name(value: Any, field_name: str = "role") -> str:
    """Validate a role name"""
    return _validate(value, ROLE_PATTERN, field_name)
