"""
Tests for the demo policy presets running through the engine
"""

from datetime import datetime, UTC

import pytest

from polyauthz.config import EngineConfig
from polyauthz.engine import build_engine
from polyauthz.exceptions import PolicyValidationError
from polyauthz.policy.models import RequestContext, Resource, SecurityLabel, Subject
from polyauthz.policy.store import PolicyStore
from polyauthz.presets import (
    API_ENDPOINT, CLASS, CLASSIFIED_DOCUMENT, FILE, PATIENT_RECORD,
    file_sharing_policy, government_policy, hospital_policy, rate_limiting_policy, school_policy,
)
from polyauthz.ratelimit import SlidingWindowCounter


def _context(hour: int = 11, **kwargs) -> RequestContext:
    return RequestContext(timestamp=datetime(2024, 3, 5, hour, 15, tzinfo=UTC), **kwargs)


class TestHospital:

    def setup_method(self):
        self.engine = build_engine(EngineConfig(), store=hospital_policy())
        self.engine.register_subject(Subject(id="dr_house", roles={"doctor"}))
        self.engine.register_subject(Subject(id="nurse_joy", roles={"nurse"},
                                             attributes={"department": "oncology"}))
        self.engine.register_subject(Subject(id="nurse_ann", roles={"nurse"},
                                             attributes={"department": "cardiology"}))
        self.engine.register_resource(Resource(
            id="record_1", type=PATIENT_RECORD,
            attributes={"assigned_doctor": "dr_house", "department": "oncology"},
        ))

    def test_assigned_doctor_prescribes(self):
        assert self.engine.authorize("dr_house", "record_1", "prescribe", _context()).allowed

    def test_nurse_reads_only_in_own_department(self):
        assert self.engine.authorize("nurse_joy", "record_1", "read", _context()).allowed
        assert not self.engine.authorize("nurse_ann", "record_1", "read", _context()).allowed

    def test_nurse_cannot_write(self):
        assert not self.engine.authorize("nurse_joy", "record_1", "write", _context()).allowed


class TestSchool:

    def setup_method(self):
        self.engine = build_engine(EngineConfig(), store=school_policy())
        self.engine.register_subject(Subject(id="ms_frizzle", roles={"teacher"}))
        self.engine.register_subject(Subject(id="arnold", roles={"student"}))
        self.engine.register_resource(Resource(id="science_101", type=CLASS, owner_id="ms_frizzle"))

    def test_teacher_grades(self):
        decision = self.engine.authorize("ms_frizzle", "science_101", "grade", _context())
        assert decision.allowed

    def test_student_submits_but_cannot_grade(self):
        assert self.engine.authorize("arnold", "science_101", "submit", _context()).allowed
        assert not self.engine.authorize("arnold", "science_101", "grade", _context()).allowed


class TestFileSharing:

    def setup_method(self):
        store = file_sharing_policy(shares=[("notes.txt", "bob", ["read"])])
        self.engine = build_engine(EngineConfig(), store=store)
        for user in ("alice", "bob", "carol"):
            self.engine.register_subject(Subject(id=user))
        self.engine.register_resource(Resource(id="notes.txt", type=FILE, owner_id="alice"))

    def test_owner_and_share(self):
        assert self.engine.authorize("alice", "notes.txt", "delete", _context()).allowed
        assert self.engine.authorize("bob", "notes.txt", "read", _context()).allowed
        assert not self.engine.authorize("bob", "notes.txt", "write", _context()).allowed
        assert not self.engine.authorize("carol", "notes.txt", "read", _context()).allowed


class TestGovernment:

    def setup_method(self):
        store = government_policy(clearances={"analyst_1": "Secret", "director": SecurityLabel.TOP_SECRET})
        self.engine = build_engine(EngineConfig(), store=store)
        self.engine.register_subject(Subject(id="analyst_1", roles={"analyst"}))
        self.engine.register_subject(Subject(id="director", roles={"officer"}))
        self.engine.register_resource(Resource(id="dossier", type=CLASSIFIED_DOCUMENT,
                                               label=SecurityLabel.TOP_SECRET))
        self.engine.register_resource(Resource(id="briefing", type=CLASSIFIED_DOCUMENT,
                                               label=SecurityLabel.SECRET))

    def test_clearance_caps_roles(self):
        assert not self.engine.authorize("analyst_1", "dossier", "read", _context()).allowed
        assert self.engine.authorize("analyst_1", "briefing", "read", _context()).allowed
        assert self.engine.authorize("director", "dossier", "write", _context()).allowed
        assert not self.engine.authorize("analyst_1", "briefing", "write", _context()).allowed


class TestRateLimiting:

    def setup_method(self):
        store = rate_limiting_policy(limit=3, business_hours=(8, 18), blocked_cidrs=["203.0.113.0/24"])
        store.assign_role("client_1", "api-client")
        self.engine = build_engine(EngineConfig(cache_enabled=False), store=store)
        self.engine.register_subject(Subject(id="client_1"))
        self.engine.register_resource(Resource(id="/v1/orders", type=API_ENDPOINT))
        self.counter = SlidingWindowCounter(window_seconds=60)

    def _call(self, hour: int = 11, source_ip: str = "198.51.100.7") -> bool:
        requests = self.counter.hit("client_1")
        context = _context(hour=hour, source_ip=source_ip, counters={"requests": requests})
        return self.engine.authorize("client_1", "/v1/orders", "call", context).allowed

    def test_quota(self):
        assert [self._call() for _ in range(4)] == [True, True, True, False]

    def test_business_hours_and_blocklist(self):
        assert not self._call(hour=20)
        assert not self._call(source_ip="203.0.113.9")
        assert self._call()


def test_presets_cannot_be_loaded_twice():
    with pytest.raises(PolicyValidationError):
        school_policy(school_policy(PolicyStore()))
