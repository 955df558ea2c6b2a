"""
Evaluator contract for polyauthz

Every access-control model is a small object with a ``name`` and an
``evaluate`` method. Evaluation is read-only: it sees one Policy Model
snapshot and returns a Verdict.
"""

from typing import Protocol, runtime_checkable

from ..policy.models import RequestContext, Resource, Subject, Verdict
from ..policy.store import PolicySnapshot


@runtime_checkable
class Evaluator(Protocol):
    """One access-control model"""

    name: str

    def evaluate(self, subject: Subject, resource: Resource, action: str,
                 context: RequestContext, policy: PolicySnapshot) -> Verdict:
        """Return Allow, Deny or NotApplicable for the request"""
        ...
