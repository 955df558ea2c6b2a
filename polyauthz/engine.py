"""
Authorization decision engine for polyauthz

Combines the access-control model evaluators into one Allow/Deny decision.

Precedence, in order:

1. MAC runs first; its Deny is final (security-label ceiling).
2. RuBAC runs next; its Deny is final (context veto).
3. The fine-grained evaluators active for the resource type (RBAC, DAC,
   ABAC) run and are combined by the configured conflict resolution.
4. Nothing granted means Deny.

A MAC or RuBAC evaluator that raises counts as a Deny.
"""

import asyncio
from typing import Dict, Iterable, List, Mapping, Optional
from datetime import datetime, UTC
import structlog

from .attributes import AttributeStore, EntityDirectory, EntityResolver
from .audit import AuditRecorder, AuditStorage
from .cache import DecisionCache, build_cache_key
from .config import ConflictResolution, EngineConfig, get_engine_config
from .constants import EvaluatorNames, Reasons
from .evaluators import (
    ABACEvaluator, DACEvaluator, Evaluator, MACEvaluator, RBACEvaluator, RuBACEvaluator,
)
from .exceptions import AttributeTimeoutError, NotFoundError
from .policy.models import Decision, RequestContext, Resource, SecurityLabel, Subject, Verdict
from .policy.store import PolicySnapshot, PolicyStore
from .utils.hashing import create_data_fingerprint
from .utils.ids import generate_decision_id

logger = structlog.get_logger(__name__)


def default_evaluators(config: EngineConfig) -> Dict[str, Evaluator]:
    """One evaluator per access-control model"""
    return {
        EvaluatorNames.MAC: MACEvaluator(SecurityLabel(config.missing_clearance_label)),
        EvaluatorNames.RUBAC: RuBACEvaluator(),
        EvaluatorNames.RBAC: RBACEvaluator(),
        EvaluatorNames.DAC: DACEvaluator(),
        EvaluatorNames.ABAC: ABACEvaluator(),
    }


class AuthorizationEngine:
    """Policy decision point over a versioned PolicyStore"""

    def __init__(
        self,
        store: Optional[PolicyStore] = None,
        config: Optional[EngineConfig] = None,
        directory: Optional[EntityDirectory] = None,
        attribute_store: Optional[AttributeStore] = None,
        cache: Optional[DecisionCache] = None,
        recorder: Optional[AuditRecorder] = None,
        evaluators: Optional[Mapping[str, Evaluator]] = None,
    ):
        self.config = config or get_engine_config()
        self.store = store or PolicyStore()
        self.directory = directory or EntityDirectory()
        self.resolver = EntityResolver(
            self.directory,
            attribute_store,
            timeout_seconds=self.config.attribute_fetch_timeout_seconds,
            max_workers=self.config.attribute_fetch_workers,
        )
        if cache is None and self.config.cache_enabled:
            cache = DecisionCache(self.config.cache_ttl_seconds, self.config.cache_max_entries)
        self.cache = cache
        self.recorder = recorder or AuditRecorder(
            algorithm=self.config.audit_hash_algorithm,
            enabled=self.config.audit_enabled,
        )
        self.evaluators: Dict[str, Evaluator] = {
            **default_evaluators(self.config),
            **(evaluators or {}),
        }

    def close(self) -> None:
        """Release the attribute fetch worker pool"""
        self.resolver.close()

    # ------------------------------------------------------------------
    # Entity registration
    # ------------------------------------------------------------------

    def register_subject(self, subject: Subject) -> Subject:
        """Register a resolved subject"""
        self.directory.put_subject(subject)
        self.notify_attributes_changed(subject_id=subject.id)
        return subject

    def register_resource(self, resource: Resource, actor: Optional[str] = None) -> Resource:
        """
        Register a resolved resource and load its ACL into the Policy Model.

        Raises:
            ConflictError: If an ACL entry duplicates a stored (grantee, action) pair
        """
        stored = self.store.get_resource_acl(resource.id)
        for entry in resource.acl:
            if entry in stored:
                continue
            self.store.add_acl_entry(resource.id, entry.grantee, entry.permissions,
                                     entry.effect, actor=actor)
        self.directory.put_resource(resource)
        self.notify_attributes_changed(resource_id=resource.id)
        return resource

    def notify_attributes_changed(self, subject_id: Optional[str] = None,
                                  resource_id: Optional[str] = None) -> int:
        """Purge cached decisions for entities whose attributes changed"""
        if self.cache is None:
            return 0
        return self.cache.invalidate_entities(subject_id=subject_id, resource_id=resource_id)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def authorize(self, subject_id: str, resource_id: str, action: str,
                  context: Optional[RequestContext] = None) -> Decision:
        """
        Decide whether subject_id may perform action on resource_id.

        Never raises for evaluation problems: unknown entities, attribute
        timeouts and evaluator failures all end in a Deny.
        """
        context = context or RequestContext()
        policy = self.store.snapshot()

        resolved = self._resolve(subject_id, resource_id, action, policy)
        if isinstance(resolved, Decision):
            self._record(resolved)
            return resolved

        subject, resource = resolved
        return self._decide(subject, resource, action, context, policy)

    def authorize_entities(self, subject: Subject, resource: Resource, action: str,
                           context: Optional[RequestContext] = None) -> Decision:
        """Decide for entities the caller has already resolved"""
        return self._decide(subject, resource, action, context or RequestContext(),
                            self.store.snapshot())

    async def authorize_async(self, subject_id: str, resource_id: str, action: str,
                              context: Optional[RequestContext] = None) -> Decision:
        """authorize() on a worker thread, for async callers"""
        return await asyncio.to_thread(self.authorize, subject_id, resource_id, action, context)

    def explain(self, subject_id: str, resource_id: str, action: str,
                context: Optional[RequestContext] = None) -> Decision:
        """Fresh evaluation with every verdict attached; bypasses cache and audit"""
        context = context or RequestContext()
        policy = self.store.snapshot()

        resolved = self._resolve(subject_id, resource_id, action, policy)
        if isinstance(resolved, Decision):
            return resolved

        subject, resource = resolved
        return self._combine(subject, resource, action, context, policy)

    def allowed_actions(self, subject_id: str, resource_id: str, actions: Iterable[str],
                        context: Optional[RequestContext] = None) -> List[str]:
        """Subset of actions the subject may perform on the resource"""
        context = context or RequestContext()
        policy = self.store.snapshot()

        resolved = self._resolve(subject_id, resource_id, "*", policy)
        if isinstance(resolved, Decision):
            return []

        subject, resource = resolved
        return [
            action for action in actions
            if self._decide(subject, resource, action, context, policy, record=False).allowed
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, subject_id: str, resource_id: str, action: str, policy: PolicySnapshot):
        try:
            return self.resolver.resolve(subject_id, resource_id)
        except NotFoundError as e:
            logger.info("Unknown principal or resource", subject_id=subject_id,
                        resource_id=resource_id, kind=e.kind)
            reason = Reasons.UNKNOWN_ENTITY
        except AttributeTimeoutError:
            reason = Reasons.ATTRIBUTE_TIMEOUT
        except Exception as e:
            logger.error("Entity resolution failed", subject_id=subject_id,
                         resource_id=resource_id, error=str(e))
            reason = Reasons.UNKNOWN_ENTITY

        return self._denial(subject_id, resource_id, action, reason, [], policy.version)

    def _fingerprint(self, subject: Subject, resource: Resource, context: RequestContext) -> str:
        return create_data_fingerprint({
            "subject": {
                "roles": subject.roles,
                "groups": subject.groups,
                "owned_resources": subject.owned_resources,
                "attributes": subject.attributes,
            },
            "resource": {
                "type": resource.type,
                "owner_id": resource.owner_id,
                "label": resource.label,
                "attributes": resource.attributes,
                "acl": [entry.model_dump(mode="json") for entry in resource.acl],
            },
            "context": context.cache_view(self.config.cache_time_bucket_seconds),
        })

    def _decide(self, subject: Subject, resource: Resource, action: str,
                context: RequestContext, policy: PolicySnapshot, record: bool = True) -> Decision:
        cacheable = (
            self.cache is not None
            and subject.attributes_complete
            and resource.attributes_complete
        )

        key = None
        if cacheable:
            key = build_cache_key(subject.id, resource.id, action, policy.version,
                                  self._fingerprint(subject, resource, context))
            hit = self.cache.get(key, self.store.current_version())
            if hit is not None:
                decision = hit.model_copy(update={
                    "decision_id": generate_decision_id(),
                    "timestamp": datetime.now(UTC),
                    "cached": True,
                })
                if record:
                    self._record(decision)
                return decision

        decision = self._combine(subject, resource, action, context, policy)

        if key is not None:
            self.cache.put(key, decision, policy.version)
        if record:
            self._record(decision)
        return decision

    def _run(self, name: str, subject: Subject, resource: Resource, action: str,
             context: RequestContext, policy: PolicySnapshot, veto: bool = False) -> Verdict:
        evaluator = self.evaluators[name]
        try:
            verdict = evaluator.evaluate(subject, resource, action, context, policy)
        except Exception as e:
            logger.error("Evaluator failed", evaluator=name, subject_id=subject.id,
                         resource_id=resource.id, action=action, error=str(e))
            # A veto evaluator that cannot decide blocks the request
            if veto:
                return Verdict.deny(name, Reasons.EVALUATOR_ERROR)
            return Verdict.not_applicable(name, Reasons.EVALUATOR_ERROR)

        logger.debug("Evaluator verdict", evaluator=name, decision=verdict.decision.value,
                     reason=verdict.reason)
        return verdict

    def _combine(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Decision:
        verdicts: List[Verdict] = []

        mac_verdict: Optional[Verdict] = None
        if self.config.mac_enabled:
            mac_verdict = self._run(EvaluatorNames.MAC, subject, resource, action, context, policy,
                                    veto=True)
            verdicts.append(mac_verdict)
            if mac_verdict.is_deny:
                return self._verdict_decision(subject, resource, action, policy, False,
                                              [mac_verdict], verdicts)

        if self.config.rubac_enabled:
            rubac_verdict = self._run(EvaluatorNames.RUBAC, subject, resource, action, context, policy,
                                      veto=True)
            verdicts.append(rubac_verdict)
            if rubac_verdict.is_deny:
                return self._verdict_decision(subject, resource, action, policy, False,
                                              [rubac_verdict], verdicts)

        active = self.config.evaluators_for(resource.type)
        fine_grained = [
            self._run(name, subject, resource, action, context, policy) for name in active
        ]
        verdicts.extend(fine_grained)

        allows = [v for v in fine_grained if v.is_allow]
        denies = [v for v in fine_grained if v.is_deny]

        # MAC alone grants only when no finer-grained model governs the type
        if not active and mac_verdict is not None and mac_verdict.is_allow:
            allows.append(mac_verdict)

        if self.config.conflict_resolution == ConflictResolution.ALLOW_OVERRIDES:
            if allows:
                return self._verdict_decision(subject, resource, action, policy, True, allows, verdicts)
            if denies:
                return self._verdict_decision(subject, resource, action, policy, False, denies, verdicts)
        else:
            if denies:
                return self._verdict_decision(subject, resource, action, policy, False, denies, verdicts)
            if allows:
                return self._verdict_decision(subject, resource, action, policy, True, allows, verdicts)

        decision = self._denial(subject.id, resource.id, action, Reasons.DEFAULT_DENY,
                                verdicts, policy.version)
        decision.ttl_seconds = self._ttl()
        return decision

    def _ttl(self) -> float:
        return self.config.cache_ttl_seconds if self.cache is not None else 0.0

    def _verdict_decision(self, subject: Subject, resource: Resource, action: str,
                          policy: PolicySnapshot, allowed: bool, deciding: List[Verdict],
                          verdicts: List[Verdict]) -> Decision:
        # Every Allow is reported; a Deny is explained by the first one
        reasons = [v.reason for v in deciding] if allowed else [deciding[0].reason]
        contributors = [v.evaluator for v in deciding] if allowed else [deciding[0].evaluator]
        return Decision(
            decision_id=generate_decision_id(),
            subject_id=subject.id,
            resource_id=resource.id,
            action=action,
            allowed=allowed,
            reason="; ".join(reasons),
            evaluator=deciding[0].evaluator,
            matched_rule=deciding[0].matched,
            evaluators=contributors,
            verdicts=verdicts,
            policy_version=policy.version,
            ttl_seconds=self._ttl(),
        )

    def _denial(self, subject_id: str, resource_id: str, action: str, reason: str,
                verdicts: List[Verdict], version: int) -> Decision:
        return Decision(
            decision_id=generate_decision_id(),
            subject_id=subject_id,
            resource_id=resource_id,
            action=action,
            allowed=False,
            reason=reason,
            verdicts=verdicts,
            policy_version=version,
        )

    def _record(self, decision: Decision) -> None:
        logger.info("Authorization decision",
                    subject_id=decision.subject_id,
                    resource_id=decision.resource_id,
                    action=decision.action,
                    allowed=decision.allowed,
                    evaluators=decision.evaluators,
                    cached=decision.cached,
                    policy_version=decision.policy_version)
        self.recorder.record_decision(decision)


def build_engine(config: Optional[EngineConfig] = None,
                 store: Optional[PolicyStore] = None,
                 attribute_store: Optional[AttributeStore] = None,
                 audit_storage: Optional[AuditStorage] = None) -> AuthorizationEngine:
    """Wire an engine from configuration"""
    config = config or get_engine_config()
    recorder = AuditRecorder(
        storage=audit_storage,
        algorithm=config.audit_hash_algorithm,
        enabled=config.audit_enabled,
    )
    return AuthorizationEngine(
        store=store,
        config=config,
        attribute_store=attribute_store,
        recorder=recorder,
    )


# Global engine instance
_engine: Optional[AuthorizationEngine] = None


def get_authorization_engine() -> AuthorizationEngine:
    """Get the global authorization engine instance"""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def authorize(subject_id: str, resource_id: str, action: str,
              context: Optional[RequestContext] = None) -> Decision:
    """Authorize against the global engine"""
    return get_authorization_engine().authorize(subject_id, resource_id, action, context)
