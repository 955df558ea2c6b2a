"""
Tests for Policy Model types, declarative conditions and rules
"""

from datetime import datetime, time, UTC

import pytest
from pydantic import ValidationError

from polyauthz.constants import ErrorCodes
from polyauthz.exceptions import ConditionEvaluationError
from polyauthz.policy.conditions import ConditionOperator, PolicyCondition
from polyauthz.policy.models import (
    ACLEntry, Decision, RequestContext, Resource, SecurityLabel, Subject, Verdict,
)
from polyauthz.policy.rules import (
    AttributeRule, MatchMode, RuBACRule,
    allow_only_networks, block_networks, block_outside_hours, rate_limit,
)


class TestSecurityLabel:
    """Test security label ordering and parsing"""

    def test_strict_total_order(self):
        assert SecurityLabel.PUBLIC < SecurityLabel.CONFIDENTIAL < SecurityLabel.SECRET < SecurityLabel.TOP_SECRET
        assert SecurityLabel.TOP_SECRET >= SecurityLabel.SECRET
        assert not SecurityLabel.SECRET < SecurityLabel.SECRET

    def test_lenient_parsing(self):
        assert SecurityLabel("TopSecret") == SecurityLabel.TOP_SECRET
        assert SecurityLabel("TOP SECRET") == SecurityLabel.TOP_SECRET
        assert SecurityLabel("Confidential") == SecurityLabel.CONFIDENTIAL
        assert SecurityLabel(2) == SecurityLabel.SECRET

        with pytest.raises(ValueError):
            SecurityLabel("cosmic")


class TestEntities:
    """Test subject, resource and context models"""

    def test_subject_clearance_from_attributes(self):
        subject = Subject(id="alice", attributes={"clearance": "Secret"})
        assert subject.clearance == SecurityLabel.SECRET

        assert Subject(id="bob").clearance is None
        assert Subject(id="eve", attributes={"clearance": "cosmic"}).clearance is None

    def test_subject_principals(self):
        subject = Subject(id="alice", groups={"staff", "admins"})
        assert subject.principals() == ["alice", "admins", "staff"]

    def test_resource_rejects_duplicate_acl_pairs(self):
        with pytest.raises(ValidationError):
            Resource(
                id="file_1",
                type="file",
                acl=[
                    ACLEntry(grantee="bob", permissions=frozenset({"read"})),
                    ACLEntry(grantee="bob", permissions=frozenset({"read", "write"})),
                ],
            )

    def test_context_attribute_view(self):
        """Derived time attributes can be overridden explicitly"""
        context = RequestContext(
            timestamp=datetime(2024, 3, 4, 14, 30, tzinfo=UTC),
            source_ip="10.0.0.5",
            counters={"requests": 3},
        )
        view = context.attribute_view()

        assert view["hour"] == 14
        assert view["time"] == time(14, 30)
        assert view["is_weekday"] is True
        assert view["counters"] == {"requests": 3}

        overridden = RequestContext(timestamp=context.timestamp, attributes={"hour": 2})
        assert overridden.attribute_view()["hour"] == 2

    def test_cache_view_buckets_time(self):
        first = RequestContext(timestamp=datetime(2024, 3, 4, 14, 0, 5, tzinfo=UTC))
        second = RequestContext(timestamp=datetime(2024, 3, 4, 14, 0, 55, tzinfo=UTC))
        third = RequestContext(timestamp=datetime(2024, 3, 4, 14, 1, 5, tzinfo=UTC))

        assert first.cache_view(60) == second.cache_view(60)
        assert first.cache_view(60) != third.cache_view(60)

    def test_decision_response(self):
        decision = Decision(
            decision_id="decision_1", subject_id="alice", resource_id="file_1",
            action="read", allowed=True, reason="owner", evaluators=["dac"],
        )
        assert decision.to_response() == {"allowed": True, "reason": "owner", "evaluators": ["dac"]}

    def test_verdict_helpers(self):
        assert Verdict.allow("rbac", "granted").is_allow
        assert Verdict.deny("abac", "no match").is_deny
        verdict = Verdict.not_applicable("dac", "no entry")
        assert not verdict.is_allow and not verdict.is_deny


class TestConditions:
    """Test condition operators"""

    attributes = {
        "subject": {"id": "dr_house", "department": "diagnostics", "level": 3, "roles": {"doctor"}},
        "resource": {"assigned_doctor": "dr_house", "department": "oncology"},
        "context": {"source_ip": "192.168.1.20", "time": time(9, 30), "counters": {"requests": 12}},
    }

    def test_comparisons(self):
        assert PolicyCondition(attribute="subject.level", operator=ConditionOperator.GTE, value=3).evaluate(self.attributes)
        assert not PolicyCondition(attribute="subject.level", operator=ConditionOperator.LT, value=3).evaluate(self.attributes)
        assert PolicyCondition(attribute="subject.department", operator=ConditionOperator.IN,
                               value=["diagnostics", "surgery"]).evaluate(self.attributes)
        assert PolicyCondition(attribute="subject.roles", operator=ConditionOperator.CONTAINS,
                               value="doctor").evaluate(self.attributes)
        assert PolicyCondition(attribute="subject.department", operator=ConditionOperator.REGEX,
                               value=r"^diag").evaluate(self.attributes)
        assert PolicyCondition(attribute="subject.level", operator=ConditionOperator.BETWEEN,
                               value=[1, 5]).evaluate(self.attributes)

    def test_value_from_reference(self):
        assigned = PolicyCondition(attribute="subject.id", operator=ConditionOperator.EQ,
                                   value_from="resource.assigned_doctor")
        same_department = PolicyCondition(attribute="subject.department", operator=ConditionOperator.EQ,
                                          value_from="resource.department")

        assert assigned.evaluate(self.attributes)
        assert not same_department.evaluate(self.attributes)

    def test_missing_attribute_is_false(self):
        """Absent attributes never satisfy a comparison"""
        condition = PolicyCondition(attribute="subject.shift", operator=ConditionOperator.NE, value="night")
        assert not condition.evaluate(self.attributes)

        assert PolicyCondition(attribute="subject.shift", operator=ConditionOperator.EXISTS,
                               value=False).evaluate(self.attributes)

    def test_network_and_time_operators(self):
        assert PolicyCondition(attribute="context.source_ip", operator=ConditionOperator.IP_IN_RANGE,
                               value="192.168.0.0/16").evaluate(self.attributes)
        assert PolicyCondition(attribute="context.time", operator=ConditionOperator.TIME_BETWEEN,
                               value=["09:00", "17:00"]).evaluate(self.attributes)
        # Overnight window
        assert not PolicyCondition(attribute="context.time", operator=ConditionOperator.TIME_BETWEEN,
                                   value=["22:00", "06:00"]).evaluate(self.attributes)

    def test_nested_counter_reference(self):
        assert PolicyCondition(attribute="context.counters.requests", operator=ConditionOperator.GT,
                               value=10).evaluate(self.attributes)

    def test_type_errors_raise_in_strict_mode(self):
        """Unevaluable operands grant nothing, and raise when evaluated strictly"""
        condition = PolicyCondition(attribute="subject.department", operator=ConditionOperator.GT, value=5)
        assert not condition.evaluate(self.attributes)

        with pytest.raises(ConditionEvaluationError) as exc_info:
            condition.evaluate(self.attributes, strict=True)

        assert exc_info.value.error_code == ErrorCodes.CONDITION_ERROR
        assert exc_info.value.details == {"attribute": "subject.department", "operator": "gt"}

    def test_malformed_ip_raises_in_strict_mode(self):
        condition = PolicyCondition(attribute="context.source_ip", operator=ConditionOperator.NOT_IP_IN_RANGE,
                                    value="10.0.0.0/8")
        attributes = {"context": {"source_ip": "evil-host"}}

        with pytest.raises(ConditionEvaluationError):
            condition.evaluate(attributes, strict=True)

    def test_invalid_reference_rejected(self):
        with pytest.raises(ValidationError):
            PolicyCondition(attribute="department", operator=ConditionOperator.EQ, value="x")
        with pytest.raises(ValidationError):
            PolicyCondition(attribute="session.user", operator=ConditionOperator.EQ, value="x")

    def test_between_requires_pair(self):
        with pytest.raises(ValidationError):
            PolicyCondition(attribute="subject.level", operator=ConditionOperator.BETWEEN, value=3)


class TestRules:
    """Test attribute and context rules"""

    def test_attribute_rule_needs_a_test(self):
        with pytest.raises(ValidationError):
            AttributeRule(action="read")

    def test_attribute_rule_match_modes(self):
        conditions = [
            PolicyCondition(attribute="subject.department", operator=ConditionOperator.EQ, value="hr"),
            PolicyCondition(attribute="subject.level", operator=ConditionOperator.GTE, value=2),
        ]
        all_rule = AttributeRule(action="read", conditions=conditions)
        any_rule = AttributeRule(action="read", conditions=conditions, match=MatchMode.ANY)
        subject = {"department": "it", "level": 4}

        assert not all_rule.matches(subject, {}, {})
        assert any_rule.matches(subject, {}, {})

    def test_predicate_rule(self):
        rule = AttributeRule(
            action="read",
            predicate=lambda s, r, c: s.get("id") == r.get("assigned_doctor"),
        )
        assert rule.matches({"id": "dr_a"}, {"assigned_doctor": "dr_a"}, {})
        assert not rule.matches({"id": "dr_b"}, {"assigned_doctor": "dr_a"}, {})

    def test_rule_applies_to(self):
        typed = AttributeRule(action="read", resource_type="file", predicate=lambda s, r, c: True)
        assert typed.applies_to("read", "file")
        assert not typed.applies_to("read", "class")
        assert not typed.applies_to("write", "file")

    def test_context_rule_rejects_subject_references(self):
        with pytest.raises(ValidationError):
            RuBACRule(conditions=[
                PolicyCondition(attribute="subject.department", operator=ConditionOperator.EQ, value="hr"),
            ])

    def test_block_outside_hours(self):
        rule = block_outside_hours(9, 17)
        assert rule.blocks({"time": time(20, 0)})
        assert not rule.blocks({"time": time(10, 0)})

    def test_network_rules(self):
        blocklist = block_networks(["10.0.0.0/8"])
        assert blocklist.blocks({"source_ip": "10.1.2.3"})
        assert not blocklist.blocks({"source_ip": "192.168.1.1"})
        assert not blocklist.blocks({"source_ip": None})

        allowlist = allow_only_networks("192.168.0.0/16")
        assert allowlist.blocks({"source_ip": "10.1.2.3"})
        assert allowlist.blocks({"source_ip": None})
        assert not allowlist.blocks({"source_ip": "192.168.4.4"})

    def test_rate_limit_rule(self):
        rule = rate_limit("requests", 100, actions=["call"])
        assert rule.applies_to("call")
        assert not rule.applies_to("read")
        assert rule.blocks({"counters": {"requests": 101}})
        assert not rule.blocks({"counters": {"requests": 100}})
        assert not rule.blocks({"counters": {}})
