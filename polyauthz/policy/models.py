"""
Policy Model data types for polyauthz
Subjects, resources, roles, ACL entries, verdicts and decisions
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set
from datetime import datetime, UTC
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SecurityLabel(str, Enum):
    """Mandatory access control labels, strictly ordered from Public to TopSecret"""
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"
    SECRET = "secret"
    TOP_SECRET = "top_secret"

    @property
    def rank(self) -> int:
        return _LABEL_RANKS[self]

    @classmethod
    def _missing_(cls, value: Any) -> Optional["SecurityLabel"]:
        # Accept "TopSecret", "TOP SECRET", "top-secret" and integer ranks
        if isinstance(value, int) and not isinstance(value, bool):
            for label, rank in _LABEL_RANKS.items():
                if rank == value:
                    return label
            return None
        if isinstance(value, str):
            key = "".join(ch for ch in value.lower() if ch.isalnum())
            for label in cls:
                if label.value.replace("_", "") == key:
                    return label
        return None

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, SecurityLabel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, SecurityLabel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, SecurityLabel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, SecurityLabel):
            return NotImplemented
        return self.rank >= other.rank


_LABEL_RANKS: Dict[SecurityLabel, int] = {
    SecurityLabel.PUBLIC: 0,
    SecurityLabel.CONFIDENTIAL: 1,
    SecurityLabel.SECRET: 2,
    SecurityLabel.TOP_SECRET: 3,
}


class ACLEffect(str, Enum):
    """Effect of a discretionary ACL entry"""
    ALLOW = "allow"
    DENY = "deny"


class ACLEntry(BaseModel):
    """Access-control list entry: a grantee and the actions it covers"""
    model_config = ConfigDict(frozen=True)

    grantee: str
    permissions: FrozenSet[str]
    effect: ACLEffect = ACLEffect.ALLOW

    @field_validator("permissions")
    @classmethod
    def _non_empty(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        if not value:
            raise ValueError("ACL entry must cover at least one action")
        return value

    def covers(self, grantee: str, action: str) -> bool:
        """Check if entry matches (grantee, action)"""
        return self.grantee == grantee and action in self.permissions


def find_acl_duplicate(entries: List[ACLEntry]) -> Optional[tuple]:
    """Return the first (grantee, action) pair that appears twice, if any"""
    seen: Set[tuple] = set()
    for entry in entries:
        for action in entry.permissions:
            pair = (entry.grantee, action)
            if pair in seen:
                return pair
            seen.add(pair)
    return None


class Role(BaseModel):
    """Role definition; permissions are granted unconditionally to holders"""
    model_config = ConfigDict(frozen=True)

    name: str
    permissions: FrozenSet[str] = frozenset()
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def has_permission(self, action: str) -> bool:
        """Check if role has specific permission"""
        return action in self.permissions

    def with_permission(self, action: str) -> "Role":
        return self.model_copy(update={"permissions": self.permissions | {action}})

    def without_permission(self, action: str) -> "Role":
        return self.model_copy(update={"permissions": self.permissions - {action}})


class Subject(BaseModel):
    """Principal requesting access"""
    id: str
    roles: Set[str] = Field(default_factory=set)
    groups: Set[str] = Field(default_factory=set)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    owned_resources: Set[str] = Field(default_factory=set)

    # False when the attribute store timed out while resolving this subject
    attributes_complete: bool = True

    @property
    def clearance(self) -> Optional[SecurityLabel]:
        """Clearance carried as a subject attribute, if any"""
        value = self.attributes.get("clearance")
        if value is None:
            return None
        if isinstance(value, SecurityLabel):
            return value
        try:
            return SecurityLabel(value)
        except ValueError:
            return None

    def principals(self) -> List[str]:
        """Identifiers an ACL entry may name for this subject"""
        return [self.id, *sorted(self.groups)]

    def attribute_view(self) -> Dict[str, Any]:
        """Flat attribute mapping used by condition evaluation"""
        return {
            **self.attributes,
            "id": self.id,
            "roles": set(self.roles),
            "groups": set(self.groups),
        }


class Resource(BaseModel):
    """Protected object"""
    id: str
    type: str
    owner_id: Optional[str] = None
    label: Optional[SecurityLabel] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    acl: List[ACLEntry] = Field(default_factory=list)

    attributes_complete: bool = True

    @model_validator(mode="after")
    def _no_duplicate_acl_pairs(self) -> "Resource":
        duplicate = find_acl_duplicate(self.acl)
        if duplicate:
            raise ValueError(
                f"Duplicate ACL entry for grantee {duplicate[0]!r}, action {duplicate[1]!r}"
            )
        return self

    def attribute_view(self) -> Dict[str, Any]:
        """Flat attribute mapping used by condition evaluation"""
        return {
            **self.attributes,
            "id": self.id,
            "type": self.type,
            "owner_id": self.owner_id,
            "label": self.label.value if self.label else None,
        }


class RequestContext(BaseModel):
    """Request-scoped context: wall-clock time, network origin and counters"""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source_ip: Optional[str] = None
    source_identity: Optional[str] = None
    counters: Dict[str, int] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def attribute_view(self) -> Dict[str, Any]:
        """Flat attribute mapping; explicit attributes override derived ones"""
        derived: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "time": self.timestamp.time(),
            "hour": self.timestamp.hour,
            "weekday": self.timestamp.weekday(),
            "is_weekday": self.timestamp.weekday() < 5,
            "source_ip": self.source_ip,
            "source_identity": self.source_identity,
            "counters": dict(self.counters),
        }
        derived.update(self.attributes)
        return derived

    def cache_view(self, time_bucket_seconds: int) -> Dict[str, Any]:
        """Context projection that participates in the decision cache key"""
        epoch = int(self.timestamp.timestamp())
        return {
            "time_bucket": epoch - (epoch % time_bucket_seconds),
            "source_ip": self.source_ip,
            "source_identity": self.source_identity,
            "counters": self.counters,
            "attributes": self.attributes,
        }


class VerdictDecision(str, Enum):
    """An evaluator's local opinion"""
    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not_applicable"


class Verdict(BaseModel):
    """Result of one evaluator"""
    model_config = ConfigDict(frozen=True)

    evaluator: str
    decision: VerdictDecision
    reason: str
    matched: Optional[str] = None  # role name, ACL grantee or rule id

    @classmethod
    def allow(cls, evaluator: str, reason: str, matched: Optional[str] = None) -> "Verdict":
        return cls(evaluator=evaluator, decision=VerdictDecision.ALLOW, reason=reason, matched=matched)

    @classmethod
    def deny(cls, evaluator: str, reason: str, matched: Optional[str] = None) -> "Verdict":
        return cls(evaluator=evaluator, decision=VerdictDecision.DENY, reason=reason, matched=matched)

    @classmethod
    def not_applicable(cls, evaluator: str, reason: str) -> "Verdict":
        return cls(evaluator=evaluator, decision=VerdictDecision.NOT_APPLICABLE, reason=reason)

    @property
    def is_allow(self) -> bool:
        return self.decision == VerdictDecision.ALLOW

    @property
    def is_deny(self) -> bool:
        return self.decision == VerdictDecision.DENY


class Decision(BaseModel):
    """Final Allow/Deny returned to the caller"""
    decision_id: str
    subject_id: str
    resource_id: str
    action: str
    allowed: bool
    reason: str
    evaluator: Optional[str] = None        # evaluator that decided
    matched_rule: Optional[str] = None     # role, ACL grantee or rule id that decided
    evaluators: List[str] = Field(default_factory=list)  # every contributing evaluator
    verdicts: List[Verdict] = Field(default_factory=list)
    policy_version: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ttl_seconds: float = 0.0
    cached: bool = False

    def to_response(self) -> Dict[str, Any]:
        """Caller contract: {allowed, reason, evaluators}"""
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "evaluators": list(self.evaluators),
        }
