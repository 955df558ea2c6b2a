"""
Mandatory Access Control evaluator for polyauthz
"""

from ..constants import EvaluatorNames, Reasons
from ..policy.models import RequestContext, Resource, SecurityLabel, Subject, Verdict
from ..policy.store import PolicySnapshot


class MACEvaluator:
    """
    Security-label ceiling.

    Deny when the subject's clearance is below the resource label, Allow when
    it dominates, NotApplicable for unlabelled resources. A clearance stored
    in the Policy Model takes precedence over a ``clearance`` attribute. When
    the clearance is unknown because the subject's attributes timed out,
    any label above Public is denied.
    """

    name = EvaluatorNames.MAC

    def __init__(self, missing_clearance: SecurityLabel = SecurityLabel.PUBLIC):
        self.missing_clearance = missing_clearance

    def clearance_of(self, subject: Subject, policy: PolicySnapshot):
        return policy.get_clearance(subject.id) or subject.clearance

    def evaluate(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Verdict:
        label = resource.label
        if label is None:
            return Verdict.not_applicable(self.name, Reasons.NO_LABEL)

        clearance = self.clearance_of(subject, policy)
        if clearance is None:
            # Clearance unknown because the attribute fetch timed out
            if not subject.attributes_complete:
                if label == SecurityLabel.PUBLIC:
                    return Verdict.not_applicable(self.name, Reasons.ATTRIBUTE_TIMEOUT)
                return Verdict.deny(self.name, Reasons.ATTRIBUTE_TIMEOUT, matched=label.value)
            clearance = self.missing_clearance

        if clearance < label:
            return Verdict.deny(
                self.name, f"clearance {clearance.value} below label {label.value}",
                matched=label.value,
            )
        return Verdict.allow(
            self.name, f"clearance {clearance.value} dominates label {label.value}",
            matched=label.value,
        )
