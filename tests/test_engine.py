"""
Tests for the authorization engine and its decision combinator
"""

import threading
from datetime import datetime, UTC

import pytest

from polyauthz.attributes import InMemoryAttributeStore
from polyauthz.audit import AuditRecorder, InMemoryAuditStorage
from polyauthz.config import ConflictResolution, EngineConfig
from polyauthz.constants import EvaluatorNames, Reasons
from polyauthz.engine import AuthorizationEngine, build_engine
from polyauthz.exceptions import AuditWriteFailure, ConflictError
from polyauthz.policy.conditions import ConditionOperator, PolicyCondition
from polyauthz.policy.models import (
    ACLEffect, ACLEntry, RequestContext, Resource, SecurityLabel, Subject, Verdict,
)
from polyauthz.policy.rules import AttributeRule, allow_only_networks, block_outside_hours, rate_limit
from polyauthz.policy.store import PolicyStore
from polyauthz.presets import PATIENT_RECORD, hospital_policy


CONTEXT = RequestContext(timestamp=datetime(2024, 3, 4, 14, 0, tzinfo=UTC), source_ip="10.0.0.1")


def _engine(store=None, attribute_store=None, **settings) -> AuthorizationEngine:
    return build_engine(config=EngineConfig(**settings), store=store or PolicyStore(),
                        attribute_store=attribute_store)


class FailingAuditStorage(InMemoryAuditStorage):
    """Audit backend that rejects every write"""

    def store_event(self, event):
        raise AuditWriteFailure("disk full", event_id=event.id)


class SlowAttributeStore:
    """Attribute store that blocks until released"""

    def __init__(self, subject_attributes=None):
        self.release = threading.Event()
        self.subject_attributes = subject_attributes or {"department": "oncology"}

    def fetch_subject_attributes(self, subject_id):
        self.release.wait(2.0)
        return dict(self.subject_attributes)

    def fetch_resource_attributes(self, resource_id):
        self.release.wait(2.0)
        return {"type": "patient-record"}


class BrokenEvaluator:
    name = EvaluatorNames.RBAC

    def evaluate(self, subject, resource, action, context, policy):
        raise RuntimeError("evaluator crashed")


class TestScenarios:
    """End-to-end decisions"""

    def setup_method(self):
        self.store = PolicyStore()
        self.engine = _engine(self.store)

    def teardown_method(self):
        self.engine.close()

    def test_teacher_grades_own_class(self):
        """RBAC grant yields Allow; every allowing evaluator is reported"""
        self.store.add_role("teacher", {"grade"})
        self.engine.register_subject(Subject(id="t1", roles={"teacher"}))
        self.engine.register_resource(Resource(id="class_1", type="class", owner_id="t1"))

        decision = self.engine.authorize("t1", "class_1", "grade", CONTEXT)

        assert decision.allowed is True
        assert decision.evaluator == EvaluatorNames.RBAC
        assert decision.matched_rule == "teacher"
        assert decision.evaluators == [EvaluatorNames.RBAC, EvaluatorNames.DAC]

    def test_mac_ceiling_overrides_everything(self):
        """Clearance below label denies even for owners with role grants"""
        self.store.add_role("officer", {"read"})
        self.engine.register_subject(Subject(id="agent", roles={"officer"},
                                             attributes={"clearance": "Secret"}))
        self.engine.register_resource(Resource(id="doc_1", type="classified-document",
                                               owner_id="agent", label=SecurityLabel.TOP_SECRET))
        context = RequestContext(timestamp=CONTEXT.timestamp, attributes={"hour": 14})

        decision = self.engine.authorize("agent", "doc_1", "read", context)

        assert decision.allowed is False
        assert decision.evaluators == [EvaluatorNames.MAC]
        assert [v.evaluator for v in decision.verdicts] == [EvaluatorNames.MAC]

    def test_owner_with_empty_acl(self):
        self.engine.register_subject(Subject(id="alice"))
        self.engine.register_resource(Resource(id="file_1", type="file", owner_id="alice"))

        decision = self.engine.authorize("alice", "file_1", "read", CONTEXT)

        assert decision.allowed is True
        assert decision.reason == Reasons.OWNER
        assert decision.to_response() == {"allowed": True, "reason": "owner", "evaluators": ["dac"]}

    def test_abac_closed_world_denies_unassigned_doctor(self):
        """RBAC Allow is overridden by an explicit ABAC Deny"""
        hospital_policy(self.store)
        self.engine.register_subject(Subject(id="dr_wilson", roles={"doctor"}))
        self.engine.register_subject(Subject(id="dr_house", roles={"doctor"}))
        self.engine.register_resource(Resource(id="record_1", type=PATIENT_RECORD,
                                               attributes={"assigned_doctor": "dr_house"}))

        denied = self.engine.authorize("dr_wilson", "record_1", "read", CONTEXT)
        allowed = self.engine.authorize("dr_house", "record_1", "read", CONTEXT)

        assert denied.allowed is False
        assert denied.evaluators == [EvaluatorNames.ABAC]
        assert allowed.allowed is True
        assert allowed.evaluators == [EvaluatorNames.RBAC, EvaluatorNames.ABAC]

    def test_default_deny_when_nothing_applies(self):
        self.engine.register_subject(Subject(id="bob"))
        self.engine.register_resource(Resource(id="file_1", type="file", owner_id="alice"))

        decision = self.engine.authorize("bob", "file_1", "read", CONTEXT)

        assert decision.allowed is False
        assert decision.reason == Reasons.DEFAULT_DENY
        assert decision.evaluators == []

    def test_rubac_vetoes_grant(self):
        self.store.add_role("staff", {"read"})
        self.store.add_rubac_rule(block_outside_hours(9, 17))
        self.engine.register_subject(Subject(id="bob", roles={"staff"}))
        self.engine.register_resource(Resource(id="file_1", type="file"))

        night = RequestContext(timestamp=datetime(2024, 3, 4, 23, 0, tzinfo=UTC))

        assert self.engine.authorize("bob", "file_1", "read", CONTEXT).allowed is True
        vetoed = self.engine.authorize("bob", "file_1", "read", night)
        assert vetoed.allowed is False
        assert vetoed.evaluators == [EvaluatorNames.RUBAC]

    def test_unknown_entity_denied(self):
        decision = self.engine.authorize("nobody", "nothing", "read", CONTEXT)

        assert decision.allowed is False
        assert decision.reason == Reasons.UNKNOWN_ENTITY
        assert len(self.engine.recorder.get_events(subject_id="nobody")) == 1


class TestCombination:
    """Test conflict resolution and evaluator activation"""

    def setup_method(self):
        self.store = PolicyStore()
        self.store.add_role("viewer", {"read"})
        self.store.add_attribute_rule(AttributeRule(
            id="same-department",
            action="read",
            conditions=[PolicyCondition(attribute="subject.department", operator=ConditionOperator.EQ,
                                        value_from="resource.department")],
        ))
        self.subject = Subject(id="bob", roles={"viewer"}, attributes={"department": "hr"})
        self.resource = Resource(id="report", type="report", attributes={"department": "finance"})

    def test_deny_overrides_by_default(self):
        engine = _engine(self.store)
        decision = engine.authorize_entities(self.subject, self.resource, "read", CONTEXT)

        assert decision.allowed is False
        assert decision.evaluator == EvaluatorNames.ABAC

    def test_allow_overrides(self):
        engine = _engine(self.store, conflict_resolution=ConflictResolution.ALLOW_OVERRIDES)
        decision = engine.authorize_entities(self.subject, self.resource, "read", CONTEXT)

        assert decision.allowed is True
        assert decision.evaluators == [EvaluatorNames.RBAC]

    def test_allow_overrides_does_not_lift_mac(self):
        engine = _engine(self.store, conflict_resolution=ConflictResolution.ALLOW_OVERRIDES)
        secret = self.resource.model_copy(update={"label": SecurityLabel.SECRET})

        assert engine.authorize_entities(self.subject, secret, "read", CONTEXT).allowed is False

    def test_resource_type_evaluators(self):
        """Only evaluators active for the type take part"""
        engine = _engine(self.store, resource_type_evaluators={"report": ["rbac"]})
        decision = engine.authorize_entities(self.subject, self.resource, "read", CONTEXT)

        assert decision.allowed is True
        assert [v.evaluator for v in decision.verdicts] == [
            EvaluatorNames.MAC, EvaluatorNames.RUBAC, EvaluatorNames.RBAC,
        ]

    def test_mac_grants_only_without_fine_grained_evaluators(self):
        cleared = self.subject.model_copy(update={"attributes": {"clearance": "secret"}})
        labelled = Resource(id="brief", type="brief", label=SecurityLabel.CONFIDENTIAL)

        fine_grained = _engine(PolicyStore())
        mac_only = _engine(PolicyStore(), resource_type_evaluators={"brief": []})

        assert fine_grained.authorize_entities(cleared, labelled, "read", CONTEXT).allowed is False
        decision = mac_only.authorize_entities(cleared, labelled, "read", CONTEXT)
        assert decision.allowed is True
        assert decision.evaluators == [EvaluatorNames.MAC]

    def test_failing_evaluator_degrades_to_not_applicable(self):
        engine = AuthorizationEngine(store=self.store, config=EngineConfig(),
                                     evaluators={EvaluatorNames.RBAC: BrokenEvaluator()})
        resource = Resource(id="file", type="file")

        decision = engine.authorize_entities(self.subject, resource, "read", CONTEXT)

        assert decision.allowed is False
        rbac = [v for v in decision.verdicts if v.evaluator == EvaluatorNames.RBAC][0]
        assert rbac == Verdict.not_applicable(EvaluatorNames.RBAC, Reasons.EVALUATOR_ERROR)

    def test_failing_mac_evaluator_denies(self):
        broken = BrokenEvaluator()
        broken.name = EvaluatorNames.MAC
        engine = AuthorizationEngine(store=self.store, config=EngineConfig(),
                                     evaluators={EvaluatorNames.MAC: broken})

        decision = engine.authorize_entities(self.subject, self.resource, "read", CONTEXT)

        assert decision.allowed is False
        assert decision.evaluators == [EvaluatorNames.MAC]
        assert decision.reason == Reasons.EVALUATOR_ERROR


class TestContextRules:
    """Blocking rules hold even when the request context is malformed"""

    def setup_method(self):
        self.store = PolicyStore()
        self.store.add_role("staff", {"read", "call"})
        self.engine = _engine(self.store, cache_enabled=False)
        self.engine.register_subject(Subject(id="alice", roles={"staff"}))
        self.engine.register_resource(Resource(id="doc", type="doc"))

    def teardown_method(self):
        self.engine.close()

    def _allowed(self, action="read", **context) -> bool:
        request = RequestContext(timestamp=CONTEXT.timestamp, **context)
        return self.engine.authorize("alice", "doc", action, request).allowed

    def test_network_allowlist(self):
        self.store.add_rubac_rule(allow_only_networks("10.0.0.0/8", rule_id="intranet"))

        assert self._allowed(source_ip="10.1.2.3") is True
        assert self._allowed(source_ip="8.8.8.8") is False
        assert self._allowed(source_ip="evil-host") is False

    def test_rate_limit_with_unreadable_counter(self):
        self.store.add_rubac_rule(rate_limit("requests", 100, rule_id="quota"))

        assert self._allowed(attributes={"counters": {"requests": 5}}) is True
        assert self._allowed(attributes={"counters": {"requests": 5000}}) is False

        decision = self.engine.authorize(
            "alice", "doc", "read",
            RequestContext(timestamp=CONTEXT.timestamp, attributes={"counters": {"requests": "5000"}}),
        )
        assert decision.allowed is False
        assert decision.evaluators == [EvaluatorNames.RUBAC]
        assert decision.reason == Reasons.EVALUATOR_ERROR


class TestCachingAndAudit:
    """Test cache interplay, idempotence and auditing"""

    def setup_method(self):
        self.store = PolicyStore()
        self.store.add_role("reader", {"read"})
        self.engine = _engine(self.store)
        self.engine.register_subject(Subject(id="bob", roles={"reader"}))
        self.engine.register_resource(Resource(id="doc", type="doc"))

    def teardown_method(self):
        self.engine.close()

    def test_repeated_calls_are_idempotent_and_cached(self):
        first = self.engine.authorize("bob", "doc", "read", CONTEXT)
        second = self.engine.authorize("bob", "doc", "read", CONTEXT)

        assert first.cached is False
        assert second.cached is True
        assert (first.allowed, first.reason) == (second.allowed, second.reason)
        assert first.decision_id != second.decision_id

    def test_policy_change_crosses_version_boundary(self):
        """A cached Allow never survives a policy mutation"""
        assert self.engine.authorize("bob", "doc", "read", CONTEXT).allowed is True

        self.store.revoke_permission("reader", "read")
        decision = self.engine.authorize("bob", "doc", "read", CONTEXT)

        assert decision.cached is False
        assert decision.allowed is False
        assert decision.policy_version == self.store.current_version()

    def test_notify_attributes_changed_purges_entries(self):
        self.engine.authorize("bob", "doc", "read", CONTEXT)

        assert self.engine.notify_attributes_changed(subject_id="bob") == 1
        assert self.engine.authorize("bob", "doc", "read", CONTEXT).cached is False

    def test_every_decision_audited(self):
        self.engine.authorize("bob", "doc", "read", CONTEXT)
        self.engine.authorize("bob", "doc", "read", CONTEXT)
        self.engine.authorize("bob", "doc", "write", CONTEXT)

        events = self.engine.recorder.get_events(subject_id="bob")
        assert len(events) == 3
        assert [e.cached for e in events] == [False, True, False]
        assert [e.allowed for e in events] == [False, True, True]
        assert self.engine.recorder.verify_integrity()

    def test_audit_failure_does_not_block_decision(self):
        recorder = AuditRecorder(storage=FailingAuditStorage())
        engine = AuthorizationEngine(store=self.store, config=EngineConfig(), recorder=recorder)
        engine.register_subject(Subject(id="bob", roles={"reader"}))
        engine.register_resource(Resource(id="doc", type="doc"))

        decision = engine.authorize("bob", "doc", "read", CONTEXT)

        assert decision.allowed is True

    def test_explain_bypasses_cache_and_audit(self):
        decision = self.engine.explain("bob", "doc", "read", CONTEXT)

        assert decision.allowed is True
        assert len(decision.verdicts) == 5
        assert self.engine.recorder.get_events() == []
        assert len(self.engine.cache) == 0

    def test_allowed_actions(self):
        self.store.grant_permission("reader", "comment")

        assert self.engine.allowed_actions("bob", "doc", ["read", "comment", "delete"], CONTEXT) == [
            "read", "comment",
        ]
        assert self.engine.allowed_actions("ghost", "doc", ["read"], CONTEXT) == []

    def test_cache_disabled(self):
        engine = _engine(self.store, cache_enabled=False)
        engine.register_subject(Subject(id="bob", roles={"reader"}))
        engine.register_resource(Resource(id="doc", type="doc"))

        engine.authorize("bob", "doc", "read", CONTEXT)
        decision = engine.authorize("bob", "doc", "read", CONTEXT)

        assert engine.cache is None
        assert decision.cached is False
        assert decision.ttl_seconds == 0


class TestRegistration:
    """Test entity registration and attribute store integration"""

    def setup_method(self):
        self.store = PolicyStore()
        self.engine = _engine(self.store)

    def teardown_method(self):
        self.engine.close()

    def test_resource_acl_loaded_into_store(self):
        resource = Resource(id="file_1", type="file", owner_id="alice",
                            acl=[ACLEntry(grantee="bob", permissions=frozenset({"read"}))])

        self.engine.register_resource(resource)
        version = self.store.current_version()
        self.engine.register_resource(resource)

        assert self.store.get_resource_acl("file_1") == (resource.acl[0],)
        assert self.store.current_version() == version

    def test_conflicting_acl_rejected(self):
        self.store.add_acl_entry("file_1", "bob", {"read"}, ACLEffect.DENY)
        resource = Resource(id="file_1", type="file",
                            acl=[ACLEntry(grantee="bob", permissions=frozenset({"read"}))])

        with pytest.raises(ConflictError):
            self.engine.register_resource(resource)

    def test_attributes_fetched_from_store(self):
        attributes = InMemoryAttributeStore()
        attributes.set_subject_attributes("nurse_joy", {"roles": ["nurse"], "department": "oncology"})
        attributes.set_resource_attributes("record_9", {"type": PATIENT_RECORD, "department": "oncology"})
        hospital_policy(self.store)
        engine = _engine(self.store, attribute_store=attributes)

        try:
            decision = engine.authorize("nurse_joy", "record_9", "read", CONTEXT)
        finally:
            engine.close()

        assert decision.allowed is True
        assert decision.matched_rule == "nurse"

    def test_attribute_timeout_degrades_abac(self):
        slow = SlowAttributeStore()
        self.store.add_attribute_rule(AttributeRule(id="always", action="read", predicate=lambda s, r, c: True))
        engine = _engine(self.store, attribute_store=slow, attribute_fetch_timeout_seconds=0.05)
        engine.register_subject(Subject(id="bob"))
        engine.register_resource(Resource(id="doc", type="doc"))

        try:
            decision = engine.authorize("bob", "doc", "read", CONTEXT)
            unregistered = engine.authorize("carol", "doc", "read", CONTEXT)
        finally:
            slow.release.set()
            engine.close()

        assert decision.allowed is False
        abac = [v for v in decision.verdicts if v.evaluator == EvaluatorNames.ABAC][0]
        assert abac.reason == Reasons.ATTRIBUTE_TIMEOUT
        assert unregistered.allowed is False
        assert unregistered.reason == Reasons.ATTRIBUTE_TIMEOUT

    def test_attribute_timeout_keeps_label_ceiling(self):
        """A role grant cannot open a labelled resource while the clearance is unknown"""
        slow = SlowAttributeStore(subject_attributes={"clearance": "confidential"})
        self.store.add_role("officer", {"read"})
        engine = _engine(self.store, attribute_store=slow, attribute_fetch_timeout_seconds=0.05)
        engine.register_subject(Subject(id="agent", roles={"officer"}))
        engine.register_resource(Resource(id="dossier", type="classified-document",
                                          label=SecurityLabel.TOP_SECRET))

        try:
            decision = engine.authorize("agent", "dossier", "read", CONTEXT)
        finally:
            slow.release.set()
            engine.close()

        assert decision.allowed is False
        assert decision.evaluators == [EvaluatorNames.MAC]
        assert decision.reason == Reasons.ATTRIBUTE_TIMEOUT


@pytest.mark.asyncio
async def test_authorize_async():
    store = PolicyStore()
    store.add_role("reader", {"read"})
    engine = _engine(store)
    engine.register_subject(Subject(id="bob", roles={"reader"}))
    engine.register_resource(Resource(id="doc", type="doc"))

    decision = await engine.authorize_async("bob", "doc", "read", CONTEXT)

    assert decision.allowed is True
