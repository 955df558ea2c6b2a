"""
Versioned Policy Model store for polyauthz

Roles, role assignments, ACLs, attribute rules, context rules and
clearances live in an immutable ``PolicySnapshot``. Every administrative
mutation builds a new snapshot with ``version + 1`` and swaps it in, so
the read path is a single attribute read and never waits on writers.
Writers are serialized per role / resource / rule key and then briefly
on the commit lock that publishes the new snapshot.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple
import structlog

from .models import ACLEffect, ACLEntry, Role, SecurityLabel, Subject
from .rules import AttributeRule, RuBACRule
from ..constants import ChangeKinds
from ..exceptions import ConflictError, NotFoundError, PolicyValidationError
from ..utils.validators import validate_action, validate_identifier, validate_role_name

logger = structlog.get_logger(__name__)


def _empty() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class PolicyChange:
    """Entry of the append-only policy change log"""
    version: int
    kind: str
    key: str
    actor: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of the Policy Model at one version"""
    version: int = 0
    roles: Mapping[str, Role] = field(default_factory=_empty)
    assignments: Mapping[str, FrozenSet[str]] = field(default_factory=_empty)
    acls: Mapping[str, Tuple[ACLEntry, ...]] = field(default_factory=_empty)
    attribute_rules: Mapping[str, AttributeRule] = field(default_factory=_empty)
    rubac_rules: Mapping[str, RuBACRule] = field(default_factory=_empty)
    clearances: Mapping[str, SecurityLabel] = field(default_factory=_empty)

    def get_role(self, name: str) -> Role:
        """Role by name; raises NotFoundError"""
        role = self.roles.get(name)
        if role is None:
            raise NotFoundError("role", name)
        return role

    def find_role(self, name: str) -> Optional[Role]:
        return self.roles.get(name)

    def get_resource_acl(self, resource_id: str) -> Tuple[ACLEntry, ...]:
        """ACL entries of a resource in insertion order"""
        return self.acls.get(resource_id, ())

    def get_attribute_rules(self, action: str, resource_type: str) -> List[AttributeRule]:
        """ABAC rules registered for (action, resource type), in insertion order"""
        return [rule for rule in self.attribute_rules.values() if rule.applies_to(action, resource_type)]

    def get_rubac_rules(self, action: str) -> List[RuBACRule]:
        """Context rules that apply to an action"""
        return [rule for rule in self.rubac_rules.values() if rule.applies_to(action)]

    def get_clearance(self, subject_id: str) -> Optional[SecurityLabel]:
        return self.clearances.get(subject_id)

    def assigned_roles(self, subject_id: str) -> FrozenSet[str]:
        return self.assignments.get(subject_id, frozenset())

    def effective_roles(self, subject: Subject) -> FrozenSet[str]:
        """Roles carried by the subject plus roles assigned in the Policy Model"""
        return frozenset(subject.roles) | self.assigned_roles(subject.id)


def _frozen(mapping: Dict) -> Mapping:
    return MappingProxyType(mapping)


class PolicyStore:
    """Versioned, copy-on-write Policy Model"""

    def __init__(self):
        self._snapshot = PolicySnapshot()
        self._changes: List[PolicyChange] = []
        self._commit_lock = threading.Lock()
        # key -> [lock, holders]; entries are dropped once no writer holds them
        self._key_locks: Dict[str, List[Any]] = {}
        self._key_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def snapshot(self) -> PolicySnapshot:
        """Current immutable snapshot"""
        return self._snapshot

    def current_version(self) -> int:
        return self._snapshot.version

    def get_role(self, name: str) -> Role:
        return self._snapshot.get_role(name)

    def get_resource_acl(self, resource_id: str) -> Tuple[ACLEntry, ...]:
        return self._snapshot.get_resource_acl(resource_id)

    def get_attribute_rules(self, action: str, resource_type: str) -> List[AttributeRule]:
        return self._snapshot.get_attribute_rules(action, resource_type)

    def get_rubac_rules(self, action: str) -> List[RuBACRule]:
        return self._snapshot.get_rubac_rules(action)

    def get_clearance(self, subject_id: str) -> Optional[SecurityLabel]:
        return self._snapshot.get_clearance(subject_id)

    def list_roles(self) -> List[Role]:
        return list(self._snapshot.roles.values())

    def changes(self, since_version: int = 0) -> List[PolicyChange]:
        """Change log entries newer than since_version"""
        with self._commit_lock:
            return [change for change in self._changes if change.version > since_version]

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def _mutate(self, lock_key: str, kind: str, key: str, actor: Optional[str],
                build: Callable[[PolicySnapshot], Dict[str, Any]],
                details: Optional[Dict[str, Any]] = None) -> PolicySnapshot:
        """Apply build() to the latest snapshot and publish the result as version + 1"""
        with self._key_lock(lock_key):
            with self._commit_lock:
                current = self._snapshot
                updates = build(current)
                updated = replace(current, version=current.version + 1, **updates)
                self._changes.append(PolicyChange(
                    version=updated.version, kind=kind, key=key,
                    actor=actor, details=details or {},
                ))
                self._snapshot = updated

        logger.info("Policy updated", kind=kind, key=key, version=updated.version, actor=actor)
        return updated

    # Roles

    def add_role(self, name: str, permissions: Iterable[str] = (), description: str = "",
                 actor: Optional[str] = None) -> Role:
        """Create a new role"""
        name = validate_role_name(name)
        role = Role(
            name=name,
            permissions=frozenset(validate_action(p, "permission") for p in permissions),
            description=description,
        )

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            if name in snapshot.roles:
                raise PolicyValidationError(f"Role already exists: {name}", field="name")
            return {"roles": _frozen({**snapshot.roles, name: role})}

        self._mutate(f"role:{name}", ChangeKinds.ROLE_ADDED, name, actor, build,
                     {"permissions": sorted(role.permissions)})
        return role

    def grant_permission(self, role_name: str, action: str, actor: Optional[str] = None) -> Role:
        """Add an action to a role's permission set"""
        action = validate_action(action)
        result: Dict[str, Role] = {}

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            role = snapshot.get_role(role_name).with_permission(action)
            result["role"] = role
            return {"roles": _frozen({**snapshot.roles, role_name: role})}

        self._mutate(f"role:{role_name}", ChangeKinds.PERMISSION_GRANTED, role_name, actor, build,
                     {"action": action})
        return result["role"]

    def revoke_permission(self, role_name: str, action: str, actor: Optional[str] = None) -> Role:
        """Remove an action from a role's permission set"""
        result: Dict[str, Role] = {}

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            role = snapshot.get_role(role_name).without_permission(action)
            result["role"] = role
            return {"roles": _frozen({**snapshot.roles, role_name: role})}

        self._mutate(f"role:{role_name}", ChangeKinds.PERMISSION_REVOKED, role_name, actor, build,
                     {"action": action})
        return result["role"]

    def assign_role(self, subject_id: str, role_name: str, actor: Optional[str] = None) -> None:
        """Assign an existing role to a subject"""
        subject_id = validate_identifier(subject_id, "subject_id")

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            snapshot.get_role(role_name)
            roles = snapshot.assigned_roles(subject_id) | {role_name}
            return {"assignments": _frozen({**snapshot.assignments, subject_id: roles})}

        self._mutate(f"subject:{subject_id}", ChangeKinds.ROLE_ASSIGNED, subject_id, actor, build,
                     {"role": role_name})

    def revoke_role(self, subject_id: str, role_name: str, actor: Optional[str] = None) -> bool:
        """Remove a role assignment; False when the subject did not hold it"""
        if role_name not in self._snapshot.assigned_roles(subject_id):
            return False

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            roles = snapshot.assigned_roles(subject_id) - {role_name}
            assignments = dict(snapshot.assignments)
            if roles:
                assignments[subject_id] = roles
            else:
                assignments.pop(subject_id, None)
            return {"assignments": _frozen(assignments)}

        self._mutate(f"subject:{subject_id}", ChangeKinds.ROLE_UNASSIGNED, subject_id, actor, build,
                     {"role": role_name})
        return True

    # ACLs

    def add_acl_entry(self, resource_id: str, grantee: str, permissions: Iterable[str],
                      effect: ACLEffect = ACLEffect.ALLOW, actor: Optional[str] = None) -> ACLEntry:
        """
        Append an ACL entry to a resource.

        Raises:
            ConflictError: If any (grantee, action) pair is already present
        """
        resource_id = validate_identifier(resource_id, "resource_id")
        grantee = validate_identifier(grantee, "grantee")
        entry = ACLEntry(
            grantee=grantee,
            permissions=frozenset(validate_action(p, "permission") for p in permissions),
            effect=ACLEffect(effect),
        )

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            existing = snapshot.get_resource_acl(resource_id)
            for current in existing:
                if current.grantee != grantee:
                    continue
                overlap = current.permissions & entry.permissions
                if overlap:
                    raise ConflictError(resource_id, grantee, sorted(overlap)[0])
            return {"acls": _frozen({**snapshot.acls, resource_id: existing + (entry,)})}

        self._mutate(f"acl:{resource_id}", ChangeKinds.ACL_ENTRY_ADDED, resource_id, actor, build,
                     {"grantee": grantee, "permissions": sorted(entry.permissions),
                      "effect": entry.effect.value})
        return entry

    def remove_acl_entry(self, resource_id: str, grantee: str, action: str,
                         actor: Optional[str] = None) -> bool:
        """Remove action from the grantee's entry; False when no entry covers it"""
        if not any(e.covers(grantee, action) for e in self._snapshot.get_resource_acl(resource_id)):
            return False

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            entries: List[ACLEntry] = []
            for entry in snapshot.get_resource_acl(resource_id):
                if entry.covers(grantee, action):
                    remaining = entry.permissions - {action}
                    if remaining:
                        entries.append(entry.model_copy(update={"permissions": remaining}))
                else:
                    entries.append(entry)
            acls = dict(snapshot.acls)
            if entries:
                acls[resource_id] = tuple(entries)
            else:
                acls.pop(resource_id, None)
            return {"acls": _frozen(acls)}

        self._mutate(f"acl:{resource_id}", ChangeKinds.ACL_ENTRY_REMOVED, resource_id, actor, build,
                     {"grantee": grantee, "action": action})
        return True

    # Attribute rules

    def add_attribute_rule(self, rule: AttributeRule, actor: Optional[str] = None) -> AttributeRule:
        """Register an ABAC rule"""
        validate_action(rule.action)

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            if rule.id in snapshot.attribute_rules:
                raise PolicyValidationError(f"Attribute rule already exists: {rule.id}", field="id")
            return {"attribute_rules": _frozen({**snapshot.attribute_rules, rule.id: rule})}

        self._mutate(f"abac:{rule.id}", ChangeKinds.ATTRIBUTE_RULE_ADDED, rule.id, actor, build,
                     {"action": rule.action, "resource_type": rule.resource_type})
        return rule

    def remove_attribute_rule(self, rule_id: str, actor: Optional[str] = None) -> bool:
        if rule_id not in self._snapshot.attribute_rules:
            return False

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            rules = dict(snapshot.attribute_rules)
            rules.pop(rule_id, None)
            return {"attribute_rules": _frozen(rules)}

        self._mutate(f"abac:{rule_id}", ChangeKinds.ATTRIBUTE_RULE_REMOVED, rule_id, actor, build)
        return True

    # Context rules

    def add_rubac_rule(self, rule: RuBACRule, actor: Optional[str] = None) -> RuBACRule:
        """Register a context-only blocking rule"""

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            if rule.id in snapshot.rubac_rules:
                raise PolicyValidationError(f"Context rule already exists: {rule.id}", field="id")
            return {"rubac_rules": _frozen({**snapshot.rubac_rules, rule.id: rule})}

        self._mutate(f"rubac:{rule.id}", ChangeKinds.RUBAC_RULE_ADDED, rule.id, actor, build)
        return rule

    def remove_rubac_rule(self, rule_id: str, actor: Optional[str] = None) -> bool:
        if rule_id not in self._snapshot.rubac_rules:
            return False

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            rules = dict(snapshot.rubac_rules)
            rules.pop(rule_id, None)
            return {"rubac_rules": _frozen(rules)}

        self._mutate(f"rubac:{rule_id}", ChangeKinds.RUBAC_RULE_REMOVED, rule_id, actor, build)
        return True

    # Clearances

    def set_clearance(self, subject_id: str, label: SecurityLabel | str,
                      actor: Optional[str] = None) -> SecurityLabel:
        """Set the clearance of a subject"""
        subject_id = validate_identifier(subject_id, "subject_id")
        try:
            clearance = SecurityLabel(label)
        except ValueError:
            raise PolicyValidationError(f"Unknown security label: {label}", field="label") from None

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            return {"clearances": _frozen({**snapshot.clearances, subject_id: clearance})}

        self._mutate(f"subject:{subject_id}", ChangeKinds.CLEARANCE_SET, subject_id, actor, build,
                     {"label": clearance.value})
        return clearance

    def clear_clearance(self, subject_id: str, actor: Optional[str] = None) -> bool:
        if subject_id not in self._snapshot.clearances:
            return False

        def build(snapshot: PolicySnapshot) -> Dict[str, Any]:
            clearances = dict(snapshot.clearances)
            clearances.pop(subject_id, None)
            return {"clearances": _frozen(clearances)}

        self._mutate(f"subject:{subject_id}", ChangeKinds.CLEARANCE_CLEARED, subject_id, actor, build)
        return True
