"""
Rule-Based (context) Access Control evaluator for polyauthz
"""

import structlog

from ..constants import EvaluatorNames, Reasons
from ..policy.models import RequestContext, Resource, Subject, Verdict
from ..policy.store import PolicySnapshot

logger = structlog.get_logger(__name__)


class RuBACEvaluator:
    """
    Deny when any context rule for the action blocks, or cannot be evaluated
    against the request context; otherwise NotApplicable
    """

    name = EvaluatorNames.RUBAC

    def evaluate(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Verdict:
        context_attrs = context.attribute_view()

        for rule in policy.get_rubac_rules(action):
            try:
                blocked = rule.blocks(context_attrs)
            except Exception as e:
                logger.error("Context rule failed", rule_id=rule.id, error=str(e))
                return Verdict.deny(self.name, Reasons.EVALUATOR_ERROR, matched=rule.id)
            if blocked:
                return Verdict.deny(self.name, f"blocked by context rule {rule.name or rule.id}",
                                    matched=rule.id)

        return Verdict.not_applicable(self.name, Reasons.NO_BLOCKING_RULE)
