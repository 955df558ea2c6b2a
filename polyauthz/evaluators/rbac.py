"""
Role-Based Access Control evaluator for polyauthz
"""

from typing import Set
import structlog

from ..constants import EvaluatorNames, Reasons
from ..policy.models import RequestContext, Resource, Subject, Verdict
from ..policy.store import PolicySnapshot

logger = structlog.get_logger(__name__)


class RBACEvaluator:
    """Allow when any of the subject's roles carries the action; never Deny"""

    name = EvaluatorNames.RBAC

    def granted_actions(self, subject: Subject, policy: PolicySnapshot) -> Set[str]:
        """All actions granted through the subject's roles"""
        actions: Set[str] = set()
        for role_name in policy.effective_roles(subject):
            role = policy.find_role(role_name)
            if role is not None:
                actions.update(role.permissions)
        return actions

    def evaluate(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Verdict:
        for role_name in sorted(policy.effective_roles(subject)):
            role = policy.find_role(role_name)
            if role is None:
                logger.debug("Subject holds undefined role", subject_id=subject.id, role=role_name)
                continue
            if role.has_permission(action):
                return Verdict.allow(self.name, f"role {role_name} grants {action}", matched=role_name)

        return Verdict.not_applicable(self.name, Reasons.NO_ROLE_GRANT)
