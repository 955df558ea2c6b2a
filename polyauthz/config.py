"""
Decision engine configuration for polyauthz
Toggles for evaluators, cache, attribute fetching and audit settings
"""

from enum import Enum
from typing import Dict, List
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

from .constants import EvaluatorNames
from .policy.models import SecurityLabel


class ConflictResolution(str, Enum):
    """How explicit Allow and Deny verdicts of fine-grained evaluators combine"""
    DENY_OVERRIDES = "deny_overrides"    # any explicit Deny wins
    ALLOW_OVERRIDES = "allow_overrides"  # any Allow wins over explicit Deny


class EngineConfig(BaseSettings):
    """Authorization decision engine settings"""
    
    # Combination settings
    conflict_resolution: ConflictResolution = Field(default=ConflictResolution.DENY_OVERRIDES)
    default_evaluators: List[str] = Field(
        default_factory=lambda: list(EvaluatorNames.FINE_GRAINED),
        description="Evaluators active for resource types without an explicit entry"
    )
    resource_type_evaluators: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Resource type -> active fine-grained evaluators"
    )
    mac_enabled: bool = Field(default=True)
    rubac_enabled: bool = Field(default=True)
    missing_clearance_label: str = Field(
        default="public",
        description="Label assumed for subjects without a clearance"
    )
    
    # Decision cache settings
    cache_enabled: bool = Field(default=True)
    cache_ttl_seconds: float = Field(default=30.0, gt=0)
    cache_max_entries: int = Field(default=10_000, gt=0)
    cache_time_bucket_seconds: int = Field(
        default=60, gt=0,
        description="Granularity at which request time enters the cache key"
    )
    
    # Attribute store settings
    attribute_fetch_timeout_seconds: float = Field(default=0.5, gt=0)
    attribute_fetch_workers: int = Field(default=8, gt=0)
    
    # Audit settings
    audit_enabled: bool = Field(default=True)
    audit_hash_algorithm: str = Field(default="sha256")
    
    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)
    
    model_config = {
        "env_prefix": "POLYAUTHZ_",
        "case_sensitive": False,
        "env_file": ".env",
        "extra": "ignore",
    }
    
    @field_validator("default_evaluators")
    @classmethod
    def _check_default_evaluators(cls, value: List[str]) -> List[str]:
        return _validate_evaluator_names(value)
    
    @field_validator("resource_type_evaluators")
    @classmethod
    def _check_type_evaluators(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        return {rtype: _validate_evaluator_names(names) for rtype, names in value.items()}
    
    @field_validator("audit_hash_algorithm")
    @classmethod
    def _check_hash_algorithm(cls, value: str) -> str:
        if value not in ("sha256", "sha512", "blake2b"):
            raise ValueError(f"Unsupported hash algorithm: {value}")
        return value
    
    @field_validator("missing_clearance_label")
    @classmethod
    def _check_clearance_label(cls, value: str) -> str:
        try:
            return SecurityLabel(value).value
        except ValueError:
            raise ValueError(f"Unknown security label: {value}") from None
    
    def evaluators_for(self, resource_type: str) -> List[str]:
        """Fine-grained evaluators active for a resource type"""
        return self.resource_type_evaluators.get(resource_type, self.default_evaluators)


def _validate_evaluator_names(names: List[str]) -> List[str]:
    normalized = [name.lower() for name in names]
    unknown = [name for name in normalized if name not in EvaluatorNames.FINE_GRAINED]
    if unknown:
        raise ValueError(
            f"Unknown evaluators {unknown}; expected any of {list(EvaluatorNames.FINE_GRAINED)}"
        )
    return normalized


# Global configuration instance
engine_config = EngineConfig()


def get_engine_config() -> EngineConfig:
    """Get the global engine configuration instance"""
    return engine_config


def update_engine_config(**kwargs) -> EngineConfig:
    """Update engine configuration with new values"""
    global engine_config
    for key, value in kwargs.items():
        if hasattr(engine_config, key):
            setattr(engine_config, key, value)
    return engine_config
