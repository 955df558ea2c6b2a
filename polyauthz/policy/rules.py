"""
Attribute (ABAC) and context (RuBAC) rules for polyauthz
"""

from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Union
from datetime import datetime, UTC, time
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .conditions import AttributeSource, ConditionOperator, PolicyCondition
from ..utils.ids import generate_rule_id

AttributePredicate = Callable[[Dict[str, Any], Dict[str, Any], Dict[str, Any]], bool]


class MatchMode(str, Enum):
    """How a rule combines its conditions"""
    ALL = "all"
    ANY = "any"


class AttributeRule(BaseModel):
    """
    ABAC rule bound to an action and, optionally, a resource type.

    A rule matches when its ``predicate`` (if any) returns True for
    ``(subject_attrs, resource_attrs, context_attrs)`` and its declarative
    ``conditions`` hold.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: generate_rule_id("abac"))
    action: str
    resource_type: Optional[str] = None  # None applies to every type
    name: str = ""
    description: str = ""
    conditions: List[PolicyCondition] = Field(default_factory=list)
    match: MatchMode = MatchMode.ALL
    predicate: Optional[AttributePredicate] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _has_test(self) -> "AttributeRule":
        if not self.conditions and self.predicate is None:
            raise ValueError("Attribute rule needs conditions or a predicate")
        return self

    def applies_to(self, action: str, resource_type: str) -> bool:
        return self.action == action and self.resource_type in (None, resource_type)

    def matches(self, subject_attrs: Dict[str, Any], resource_attrs: Dict[str, Any],
                context_attrs: Dict[str, Any]) -> bool:
        """Evaluate rule; exceptions from the predicate propagate to the evaluator"""
        if self.predicate is not None and not self.predicate(subject_attrs, resource_attrs, context_attrs):
            return False
        if not self.conditions:
            return True
        attributes = {
            AttributeSource.SUBJECT.value: subject_attrs,
            AttributeSource.RESOURCE.value: resource_attrs,
            AttributeSource.CONTEXT.value: context_attrs,
        }
        results = (condition.evaluate(attributes) for condition in self.conditions)
        return any(results) if self.match == MatchMode.ANY else all(results)


class RuBACRule(BaseModel):
    """Blocking rule over request context only (time, network origin, counters)"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_rule_id("rubac"))
    name: str = ""
    description: str = ""
    conditions: List[PolicyCondition]
    match: MatchMode = MatchMode.ALL
    actions: Optional[FrozenSet[str]] = None  # None applies to every action
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _context_only(self) -> "RuBACRule":
        if not self.conditions:
            raise ValueError("Context rule needs at least one condition")
        for condition in self.conditions:
            if condition.sources() != {AttributeSource.CONTEXT}:
                raise ValueError(
                    f"Context rules may only reference context attributes: {condition.attribute}"
                )
        return self

    def applies_to(self, action: str) -> bool:
        return self.actions is None or action in self.actions

    def blocks(self, context_attrs: Dict[str, Any]) -> bool:
        """
        True when the rule's conditions hold for the request context.

        Raises ConditionEvaluationError when a condition cannot be evaluated.
        """
        attributes = {AttributeSource.CONTEXT.value: context_attrs}
        results = (condition.evaluate(attributes, strict=True) for condition in self.conditions)
        return any(results) if self.match == MatchMode.ANY else all(results)


# Predefined context rules

TimeLike = Union[str, int, time]


def _time_str(value: TimeLike) -> str:
    if isinstance(value, int):
        return time(hour=value).isoformat(timespec="minutes")
    if isinstance(value, time):
        return value.isoformat(timespec="minutes")
    return value


def block_outside_hours(start: TimeLike, end: TimeLike, actions: Optional[Iterable[str]] = None,
                        rule_id: Optional[str] = None) -> RuBACRule:
    """Block requests whose time of day falls outside [start, end]"""
    window = [_time_str(start), _time_str(end)]
    return RuBACRule(
        id=rule_id or generate_rule_id("hours"),
        name="Time Window",
        description=f"Block requests outside {window[0]}-{window[1]}",
        conditions=[PolicyCondition(attribute="context.time",
                                    operator=ConditionOperator.NOT_TIME_BETWEEN, value=window)],
        actions=frozenset(actions) if actions is not None else None,
    )


def block_networks(cidrs: Union[str, List[str]], actions: Optional[Iterable[str]] = None,
                   rule_id: Optional[str] = None) -> RuBACRule:
    """Block requests originating from any of the given networks"""
    ranges = [cidrs] if isinstance(cidrs, str) else list(cidrs)
    return RuBACRule(
        id=rule_id or generate_rule_id("netblock"),
        name="Blocked Networks",
        description=f"Block requests from {', '.join(ranges)}",
        conditions=[PolicyCondition(attribute="context.source_ip",
                                    operator=ConditionOperator.IP_IN_RANGE, value=ranges)],
        actions=frozenset(actions) if actions is not None else None,
    )


def allow_only_networks(cidrs: Union[str, List[str]], actions: Optional[Iterable[str]] = None,
                        rule_id: Optional[str] = None) -> RuBACRule:
    """Block requests from outside the given networks, or with no known origin"""
    ranges = [cidrs] if isinstance(cidrs, str) else list(cidrs)
    return RuBACRule(
        id=rule_id or generate_rule_id("netallow"),
        name="Allowed Networks",
        description=f"Only allow requests from {', '.join(ranges)}",
        conditions=[
            PolicyCondition(attribute="context.source_ip", operator=ConditionOperator.EXISTS, value=False),
            PolicyCondition(attribute="context.source_ip",
                            operator=ConditionOperator.NOT_IP_IN_RANGE, value=ranges),
        ],
        match=MatchMode.ANY,
        actions=frozenset(actions) if actions is not None else None,
    )


def rate_limit(counter: str, limit: int, actions: Optional[Iterable[str]] = None,
               rule_id: Optional[str] = None) -> RuBACRule:
    """Block requests once the named context counter exceeds limit"""
    return RuBACRule(
        id=rule_id or generate_rule_id("ratelimit"),
        name="Rate Limit",
        description=f"Block when {counter} exceeds {limit}",
        conditions=[PolicyCondition(attribute=f"context.counters.{counter}",
                                    operator=ConditionOperator.GT, value=limit)],
        actions=frozenset(actions) if actions is not None else None,
    )
