"""
Billing core: status evaluation, feature gating and the reconciliation
state machine. Framework-free; the SQL store lives in ``billing.store``.
"""
from .constants import PLAN_CHOICES, STATUS_CHOICES
from .context import BillingContext
from .evaluator import EffectiveStatus, evaluate
from .features import can
from .reconciler import Reconciler, ReconcileResult
from .state import BillingState

__all__ = [
    "BillingContext",
    "BillingState",
    "EffectiveStatus",
    "PLAN_CHOICES",
    "ReconcileResult",
    "Reconciler",
    "STATUS_CHOICES",
    "can",
    "evaluate",
]
