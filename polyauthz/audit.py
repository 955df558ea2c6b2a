"""
Audit/explanation trail for polyauthz
Append-only, hash-chained record of every authorization decision
"""

import itertools
import json
import threading
from typing import Any, Dict, List, Optional, Protocol
from datetime import datetime, UTC
from pydantic import BaseModel, Field
import structlog

from .constants import AuditEventTypes
from .exceptions import AuditWriteFailure
from .policy.models import Decision
from .utils.hashing import HashChain
from .utils.ids import generate_audit_id

logger = structlog.get_logger(__name__)


class AuditEvent(BaseModel):
    """Explanation of one authorization decision"""
    id: str = Field(default_factory=generate_audit_id)
    sequence: int = 0
    event_type: str = AuditEventTypes.DECISION
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    subject_id: str
    resource_id: str
    action: str
    allowed: bool
    reason: str = ""
    evaluators: List[str] = Field(default_factory=list)
    matched_rule: Optional[str] = None

    decision_id: Optional[str] = None
    policy_version: Optional[int] = None
    cached: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)

    # Integrity
    hash: Optional[str] = None
    previous_hash: Optional[str] = None

    @property
    def outcome(self) -> str:
        return "allow" if self.allowed else "deny"

    def to_audit_string(self) -> str:
        """Convert to string for hashing"""
        audit_data = {
            "id": self.id,
            "sequence": self.sequence,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "subject_id": self.subject_id,
            "resource_id": self.resource_id,
            "action": self.action,
            "allowed": self.allowed,
            "reason": self.reason,
            "evaluators": self.evaluators,
            "matched_rule": self.matched_rule,
            "decision_id": self.decision_id,
            "policy_version": self.policy_version,
            "cached": self.cached,
            "details": self.details,
        }

        return json.dumps(audit_data, sort_keys=True, separators=(',', ':'), default=str)


class AuditStorage(Protocol):
    """Append-only audit backend; store_event raises AuditWriteFailure on failure"""

    def store_event(self, event: AuditEvent) -> None:
        ...

    def get_events(self, subject_id: Optional[str] = None, resource_id: Optional[str] = None,
                   allowed: Optional[bool] = None, start_time: Optional[datetime] = None,
                   end_time: Optional[datetime] = None, limit: int = 100) -> List[AuditEvent]:
        ...

    def all_events(self) -> List[AuditEvent]:
        ...


class InMemoryAuditStorage:
    """In-memory append-only audit storage"""

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def store_event(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def all_events(self) -> List[AuditEvent]:
        """Every event in append order"""
        with self._lock:
            return list(self._events)

    def get_events(self, subject_id: Optional[str] = None, resource_id: Optional[str] = None,
                   allowed: Optional[bool] = None, start_time: Optional[datetime] = None,
                   end_time: Optional[datetime] = None, limit: int = 100) -> List[AuditEvent]:
        """Get filtered audit events, newest first"""
        filtered_events = self.all_events()

        if subject_id:
            filtered_events = [e for e in filtered_events if e.subject_id == subject_id]

        if resource_id:
            filtered_events = [e for e in filtered_events if e.resource_id == resource_id]

        if allowed is not None:
            filtered_events = [e for e in filtered_events if e.allowed == allowed]

        if start_time:
            filtered_events = [e for e in filtered_events if e.timestamp >= start_time]

        if end_time:
            filtered_events = [e for e in filtered_events if e.timestamp <= end_time]

        filtered_events.sort(key=lambda e: e.sequence, reverse=True)

        return filtered_events[:limit]


class AuditRecorder:
    """
    Records decision explanations with hash-chain integrity.

    Recording never raises: a failing backend is logged and the call
    degrades to a no-op so audit unavailability cannot block authorization.
    """

    def __init__(self, storage: Optional[AuditStorage] = None, algorithm: str = "sha256",
                 enabled: bool = True):
        self.storage = storage or InMemoryAuditStorage()
        self.enabled = enabled
        self.hash_chain = HashChain(algorithm=algorithm)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def record(self, subject_id: str, resource_id: str, action: str, final_decision: bool,
               contributing_evaluators: List[str], timestamp: Optional[datetime] = None,
               reason: str = "", **extra: Any) -> Optional[AuditEvent]:
        """Append an explanation; returns None when disabled or the write failed"""
        if not self.enabled:
            return None

        try:
            with self._lock:
                event = AuditEvent(
                    sequence=next(self._sequence),
                    timestamp=timestamp or datetime.now(UTC),
                    subject_id=subject_id,
                    resource_id=resource_id,
                    action=action,
                    allowed=final_decision,
                    reason=reason,
                    evaluators=list(contributing_evaluators),
                    **extra,
                )
                event.previous_hash = self.hash_chain.current_hash
                event.hash = self.hash_chain.link(
                    event.previous_hash, event.to_audit_string().encode('utf-8')
                )

                self.storage.store_event(event)

                # Only advance the chain once the event is durable
                self.hash_chain.add_entry(event.to_audit_string().encode('utf-8'))
        except AuditWriteFailure as e:
            logger.error("Audit write failed", subject_id=subject_id, resource_id=resource_id,
                         action=action, error=e.message)
            return None
        except Exception as e:
            logger.error("Audit write failed", subject_id=subject_id, resource_id=resource_id,
                         action=action, error=str(e))
            return None

        logger.debug("Audit event recorded", event_id=event.id, subject_id=subject_id,
                     action=action, outcome=event.outcome)
        return event

    def record_decision(self, decision: Decision) -> Optional[AuditEvent]:
        """Record a final Decision"""
        return self.record(
            subject_id=decision.subject_id,
            resource_id=decision.resource_id,
            action=decision.action,
            final_decision=decision.allowed,
            contributing_evaluators=decision.evaluators,
            timestamp=decision.timestamp,
            reason=decision.reason,
            event_type=AuditEventTypes.CACHED_DECISION if decision.cached else AuditEventTypes.DECISION,
            matched_rule=decision.matched_rule,
            decision_id=decision.decision_id,
            policy_version=decision.policy_version,
            cached=decision.cached,
        )

    def get_events(self, subject_id: Optional[str] = None, resource_id: Optional[str] = None,
                   allowed: Optional[bool] = None, start_time: Optional[datetime] = None,
                   end_time: Optional[datetime] = None, limit: int = 100) -> List[AuditEvent]:
        """Retrieve audit events with filters"""
        return self.storage.get_events(subject_id, resource_id, allowed, start_time, end_time, limit)

    def verify_integrity(self, events: Optional[List[AuditEvent]] = None) -> bool:
        """Verify that events form an unbroken hash chain"""
        if events is None:
            events = self.storage.all_events()

        if not events:
            return True

        events = sorted(events, key=lambda e: e.sequence)
        previous_hash = events[0].previous_hash
        for event in events:
            expected_hash = self.hash_chain.link(
                previous_hash, event.to_audit_string().encode('utf-8')
            )

            if event.previous_hash != previous_hash or event.hash != expected_hash:
                logger.error("Audit integrity violation",
                             event_id=event.id,
                             expected_hash=expected_hash,
                             actual_hash=event.hash)
                return False

            previous_hash = event.hash

        logger.info("Audit integrity verified", event_count=len(events))
        return True

    def export_audit_trail(self, subject_id: Optional[str] = None,
                           start_time: Optional[datetime] = None,
                           end_time: Optional[datetime] = None) -> Dict[str, Any]:
        """Export audit trail for compliance review"""
        events = self.get_events(subject_id, None, None, start_time, end_time, limit=10000)

        return {
            "export_timestamp": datetime.now(UTC).isoformat(),
            "subject_id": subject_id,
            "start_time": start_time.isoformat() if start_time else None,
            "end_time": end_time.isoformat() if end_time else None,
            "event_count": len(events),
            "events": [event.model_dump(mode="json") for event in events],
            "integrity_verified": self.verify_integrity() if subject_id is None else None,
        }
