"""
Discretionary Access Control evaluator for polyauthz
"""

from ..constants import EvaluatorNames, Reasons
from ..policy.models import ACLEffect, RequestContext, Resource, Subject, Verdict
from ..policy.store import PolicySnapshot


class DACEvaluator:
    """
    Owner first, then the resource ACL in insertion order.

    The first entry naming the subject or one of its groups together with
    the action decides; with no such entry the verdict is NotApplicable.
    """

    name = EvaluatorNames.DAC

    def evaluate(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Verdict:
        if resource.owner_id == subject.id or resource.id in subject.owned_resources:
            return Verdict.allow(self.name, Reasons.OWNER, matched=subject.id)

        # The Policy Model is canonical; an unregistered resource falls back to its own ACL
        entries = policy.get_resource_acl(resource.id) or tuple(resource.acl)
        principals = set(subject.principals())

        for entry in entries:
            if entry.grantee in principals and action in entry.permissions:
                reason = f"ACL entry for {entry.grantee} {entry.effect.value}s {action}"
                if entry.effect == ACLEffect.DENY:
                    return Verdict.deny(self.name, reason, matched=entry.grantee)
                return Verdict.allow(self.name, reason, matched=entry.grantee)

        return Verdict.not_applicable(self.name, Reasons.NO_ACL_MATCH)
