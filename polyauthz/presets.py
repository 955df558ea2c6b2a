"""
Demo policies for polyauthz

Each builder loads one demo domain into a PolicyStore and returns it:
hospital (roles plus an assigned-doctor attribute rule), school (roles),
file sharing (owner ACLs), government (labels and clearances) and a
rate-limited API (context rules).
"""

from typing import Iterable, Mapping, Optional, Tuple, Union
import structlog

from .policy.conditions import ConditionOperator, PolicyCondition
from .policy.models import ACLEffect, SecurityLabel
from .policy.rules import AttributeRule, block_networks, block_outside_hours, rate_limit
from .policy.store import PolicyStore

logger = structlog.get_logger(__name__)

PRESET_ACTOR = "presets"

# Resource types used by the demo domains
PATIENT_RECORD = "patient-record"
CLASS = "class"
FILE = "file"
CLASSIFIED_DOCUMENT = "classified-document"
API_ENDPOINT = "api-endpoint"


def hospital_policy(store: Optional[PolicyStore] = None) -> PolicyStore:
    """Doctors and nurses read patient records only when assigned or in the same ward"""
    store = store or PolicyStore()

    store.add_role("doctor", {"read", "write", "prescribe"},
                   description="Attending physician", actor=PRESET_ACTOR)
    store.add_role("nurse", {"read"}, description="Ward nurse", actor=PRESET_ACTOR)
    store.add_role("receptionist", {"schedule"}, description="Front desk", actor=PRESET_ACTOR)

    assigned_doctor = PolicyCondition(
        attribute="subject.id",
        operator=ConditionOperator.EQ,
        value_from="resource.assigned_doctor",
    )
    for action in ("read", "write", "prescribe"):
        store.add_attribute_rule(AttributeRule(
            id=f"hospital-assigned-doctor-{action}",
            action=action,
            resource_type=PATIENT_RECORD,
            name="Assigned doctor",
            description="Only the assigned doctor may access the record",
            conditions=[assigned_doctor],
        ), actor=PRESET_ACTOR)

    store.add_attribute_rule(AttributeRule(
        id="hospital-ward-nurse-read",
        action="read",
        resource_type=PATIENT_RECORD,
        name="Ward nurse",
        description="Nurses read records of patients in their own department",
        conditions=[
            PolicyCondition(attribute="subject.roles", operator=ConditionOperator.CONTAINS,
                            value="nurse"),
            PolicyCondition(attribute="subject.department", operator=ConditionOperator.EQ,
                            value_from="resource.department"),
        ],
    ), actor=PRESET_ACTOR)

    logger.info("Hospital policy loaded", version=store.current_version())
    return store


def school_policy(store: Optional[PolicyStore] = None) -> PolicyStore:
    """Teachers grade and edit classes; students read and submit"""
    store = store or PolicyStore()

    store.add_role("teacher", {"read", "grade", "edit"},
                   description="Class teacher", actor=PRESET_ACTOR)
    store.add_role("student", {"read", "submit"},
                   description="Enrolled student", actor=PRESET_ACTOR)
    store.add_role("principal", {"read", "grade", "edit", "archive"},
                   description="School principal", actor=PRESET_ACTOR)

    logger.info("School policy loaded", version=store.current_version())
    return store


ShareSpec = Tuple[str, str, Iterable[str]]


def file_sharing_policy(store: Optional[PolicyStore] = None,
                        shares: Iterable[ShareSpec] = ()) -> PolicyStore:
    """
    Owners control their files; shares are (resource_id, grantee, actions).

    Ownership itself needs no policy entry: the DAC evaluator lets owners in.
    """
    store = store or PolicyStore()

    for resource_id, grantee, actions in shares:
        store.add_acl_entry(resource_id, grantee, actions, ACLEffect.ALLOW, actor=PRESET_ACTOR)

    logger.info("File sharing policy loaded", version=store.current_version())
    return store


def government_policy(store: Optional[PolicyStore] = None,
                      clearances: Optional[Mapping[str, Union[SecurityLabel, str]]] = None) -> PolicyStore:
    """Analysts read and officers write, always capped by clearance"""
    store = store or PolicyStore()

    store.add_role("analyst", {"read"}, description="Intelligence analyst", actor=PRESET_ACTOR)
    store.add_role("officer", {"read", "write", "declassify"},
                   description="Case officer", actor=PRESET_ACTOR)

    for subject_id, label in (clearances or {}).items():
        store.set_clearance(subject_id, label, actor=PRESET_ACTOR)

    logger.info("Government policy loaded", version=store.current_version())
    return store


def rate_limiting_policy(store: Optional[PolicyStore] = None,
                         limit: int = 100,
                         counter: str = "requests",
                         business_hours: Optional[Tuple[int, int]] = None,
                         blocked_cidrs: Iterable[str] = ()) -> PolicyStore:
    """Context rules for an API: request quota, optional opening hours and blocklist"""
    store = store or PolicyStore()

    store.add_role("api-client", {"call"}, description="Registered API client", actor=PRESET_ACTOR)
    store.add_rubac_rule(rate_limit(counter, limit, rule_id="api-rate-limit"), actor=PRESET_ACTOR)

    if business_hours is not None:
        start, end = business_hours
        store.add_rubac_rule(block_outside_hours(start, end, rule_id="api-business-hours"),
                             actor=PRESET_ACTOR)

    cidrs = list(blocked_cidrs)
    if cidrs:
        store.add_rubac_rule(block_networks(cidrs, rule_id="api-blocklist"), actor=PRESET_ACTOR)

    logger.info("Rate limiting policy loaded", version=store.current_version(), limit=limit)
    return store
