"""
Attribute-Based Access Control evaluator for polyauthz
"""

import structlog

from ..constants import EvaluatorNames, Reasons
from ..policy.models import RequestContext, Resource, Subject, Verdict
from ..policy.store import PolicySnapshot

logger = structlog.get_logger(__name__)


class ABACEvaluator:
    """
    Closed-world attribute evaluation.

    Rules registered for (action, resource type) are tried in insertion
    order; the first match allows. Registered rules with no match deny.
    No registered rules means NotApplicable.
    """

    name = EvaluatorNames.ABAC

    def evaluate(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Verdict:
        rules = policy.get_attribute_rules(action, resource.type)
        if not rules:
            return Verdict.not_applicable(self.name, Reasons.NO_ATTRIBUTE_RULES)

        if not (subject.attributes_complete and resource.attributes_complete):
            return Verdict.not_applicable(self.name, Reasons.ATTRIBUTE_TIMEOUT)

        subject_attrs = subject.attribute_view()
        resource_attrs = resource.attribute_view()
        context_attrs = context.attribute_view()

        for rule in rules:
            try:
                matched = rule.matches(subject_attrs, resource_attrs, context_attrs)
            except Exception as e:
                logger.error("Attribute rule failed", rule_id=rule.id, error=str(e))
                continue
            if matched:
                return Verdict.allow(self.name, f"attribute rule {rule.name or rule.id} matched",
                                     matched=rule.id)

        return Verdict.deny(self.name, Reasons.NO_ATTRIBUTE_MATCH)
