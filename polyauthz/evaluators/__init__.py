"""
Access-control model evaluators for polyauthz
RBAC, DAC, ABAC, MAC and RuBAC behind one Verdict contract
"""

from .base import Evaluator
from .rbac import RBACEvaluator
from .dac import DACEvaluator
from .abac import ABACEvaluator
from .mac import MACEvaluator
from .rubac import RuBACEvaluator

__all__ = [
    "Evaluator",
    "RBACEvaluator",
    "DACEvaluator",
    "ABACEvaluator",
    "MACEvaluator",
    "RuBACEvaluator",
]
