"""
Declarative conditions for polyauthz
Attribute comparisons used by ABAC and RuBAC rules
"""

import re
from datetime import datetime, time
from enum import Enum
from ipaddress import ip_address, ip_network
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from pydantic import BaseModel, field_validator, model_validator
import structlog

from ..exceptions import ConditionEvaluationError

logger = structlog.get_logger(__name__)


class AttributeSource(str, Enum):
    """Roots an attribute reference may start from"""
    SUBJECT = "subject"
    RESOURCE = "resource"
    CONTEXT = "context"


class ConditionOperator(str, Enum):
    """Supported condition operators"""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    REGEX = "regex"
    EXISTS = "exists"
    BETWEEN = "between"
    IP_IN_RANGE = "ip_in_range"
    NOT_IP_IN_RANGE = "not_ip_in_range"
    TIME_BETWEEN = "time_between"
    NOT_TIME_BETWEEN = "not_time_between"


def split_reference(reference: str) -> Tuple[AttributeSource, str]:
    """Split "subject.department" into (SUBJECT, "department")"""
    root, _, path = reference.partition(".")
    if not path:
        raise ValueError(f"Attribute reference must be dotted: {reference!r}")
    try:
        return AttributeSource(root), path
    except ValueError:
        raise ValueError(
            f"Attribute reference must start with subject., resource. or context.: {reference!r}"
        ) from None


def resolve_reference(attributes: Mapping[str, Mapping[str, Any]], reference: str) -> Any:
    """Resolve a dotted reference against {"subject": ..., "resource": ..., "context": ...}"""
    source, path = split_reference(reference)
    value: Any = attributes.get(source.value, {})
    for key in path.split("."):
        if isinstance(value, Mapping):
            value = value.get(key)
        else:
            return None
    return value


class PolicyCondition(BaseModel):
    """
    Individual condition in a rule.

    ``attribute`` and ``value_from`` are dotted references such as
    ``resource.assigned_doctor`` or ``context.counters.requests``. When
    ``value_from`` is set the comparison operand is read from that attribute
    instead of ``value``.
    """
    attribute: str
    operator: ConditionOperator
    value: Any = None
    value_from: Optional[str] = None

    @field_validator("attribute", "value_from")
    @classmethod
    def _check_reference(cls, reference: Optional[str]) -> Optional[str]:
        if reference is not None:
            split_reference(reference)
        return reference

    @model_validator(mode="after")
    def _check_operand(self) -> "PolicyCondition":
        if self.operator in (ConditionOperator.BETWEEN, ConditionOperator.TIME_BETWEEN,
                             ConditionOperator.NOT_TIME_BETWEEN):
            if self.value_from is None and (not isinstance(self.value, (list, tuple)) or len(self.value) != 2):
                raise ValueError(f"{self.operator.value} expects a [low, high] pair")
        return self

    def sources(self) -> set:
        """Attribute roots this condition reads"""
        roots = {split_reference(self.attribute)[0]}
        if self.value_from:
            roots.add(split_reference(self.value_from)[0])
        return roots

    def evaluate(self, attributes: Mapping[str, Mapping[str, Any]], strict: bool = False) -> bool:
        """
        Evaluate condition against subject/resource/context attributes.

        A value the operator cannot handle (a hostname for an IP range, a
        string counter against an integer limit) evaluates to False, or
        raises ConditionEvaluationError when ``strict`` is set.
        """
        attr_value = resolve_reference(attributes, self.attribute)

        if self.operator == ConditionOperator.EXISTS:
            expected = True if self.value is None else bool(self.value)
            return (attr_value is not None) == expected

        if attr_value is None:
            return False

        expected = self.value
        if self.value_from is not None:
            expected = resolve_reference(attributes, self.value_from)
            if expected is None:
                return False

        op_func = _OPERATORS[self.operator]
        try:
            return bool(op_func(attr_value, expected))
        except (TypeError, ValueError, re.error) as e:
            logger.error("Condition evaluation failed",
                         attribute=self.attribute, operator=self.operator.value, error=str(e))
            if strict:
                raise ConditionEvaluationError(self.attribute, self.operator.value, str(e)) from e
            return False


# Operator implementations

def _contains(value: Any, expected: Any) -> bool:
    if isinstance(value, (list, tuple, set, frozenset)):
        return expected in value
    return str(expected) in str(value)


def _in(value: Any, expected: Any) -> bool:
    if isinstance(value, (list, tuple, set, frozenset)):
        return bool(set(value) & set(expected))
    return value in expected


def _between(value: Any, expected: Any) -> bool:
    low, high = expected
    return low <= value <= high


def _ip_in_range(value: Any, expected: Any) -> bool:
    ip = ip_address(str(value))
    ranges = [expected] if isinstance(expected, str) else expected
    return any(ip in ip_network(cidr, strict=False) for cidr in ranges)


def _as_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        return time(hour=value)
    return time.fromisoformat(str(value))


def _time_between(value: Any, expected: Any) -> bool:
    current = _as_time(value)
    start, end = _as_time(expected[0]), _as_time(expected[1])
    if start <= end:
        return start <= current <= end
    # Crosses midnight
    return current >= start or current <= end


_OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQ: lambda v, e: v == e,
    ConditionOperator.NE: lambda v, e: v != e,
    ConditionOperator.GT: lambda v, e: v > e,
    ConditionOperator.GTE: lambda v, e: v >= e,
    ConditionOperator.LT: lambda v, e: v < e,
    ConditionOperator.LTE: lambda v, e: v <= e,
    ConditionOperator.IN: _in,
    ConditionOperator.NOT_IN: lambda v, e: not _in(v, e),
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.REGEX: lambda v, e: bool(re.match(str(e), str(v))),
    ConditionOperator.BETWEEN: _between,
    ConditionOperator.IP_IN_RANGE: _ip_in_range,
    ConditionOperator.NOT_IP_IN_RANGE: lambda v, e: not _ip_in_range(v, e),
    ConditionOperator.TIME_BETWEEN: _time_between,
    ConditionOperator.NOT_TIME_BETWEEN: lambda v, e: not _time_between(v, e),
}
