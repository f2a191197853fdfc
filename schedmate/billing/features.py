from typing import Dict

from .constants import PLAN_OWNER, PLAN_PRO, PLAN_STARTER, STATUS_TRIAL
from .evaluator import EffectiveStatus
from .state import BillingState

# Canonical feature keys
FEATURE_TIMELINE = "timeline"
FEATURE_ANALYTICS = "analytics"
FEATURE_ADD_BOOKING = "add_booking"
FEATURE_EDIT_BOOKING = "edit_booking"
FEATURE_CANCEL_BOOKING = "cancel_booking"

FEATURE_KEYS = (
    FEATURE_TIMELINE,
    FEATURE_ANALYTICS,
    FEATURE_ADD_BOOKING,
    FEATURE_EDIT_BOOKING,
    FEATURE_CANCEL_BOOKING,
)

STARTER_FEATURES: Dict[str, bool] = {key: False for key in FEATURE_KEYS}
PRO_FEATURES: Dict[str, bool] = {key: True for key in FEATURE_KEYS}

FEATURES: Dict[str, Dict[str, bool]] = {
    PLAN_STARTER: STARTER_FEATURES,
    PLAN_PRO: PRO_FEATURES,
    PLAN_OWNER: dict(PRO_FEATURES),
}


def plan_allows(plan: str, feature: str) -> bool:
    # unknown plan or feature: closed
    return FEATURES.get(plan, {}).get(feature, False) is True


def can(record: BillingState, effective: EffectiveStatus, feature: str) -> bool:
    """
    Feature gate. Order matters:
      owner > grace (real plan) > locked > trial (starter table) > plan table.
    """
    if record.plan == PLAN_OWNER:
        return True
    if effective.in_grace:
        return plan_allows(record.plan, feature)
    if effective.locked:
        return False
    if record.status == STATUS_TRIAL:
        return plan_allows(PLAN_STARTER, feature)
    return plan_allows(record.plan, feature)


def feature_map(record: BillingState, effective: EffectiveStatus) -> Dict[str, bool]:
    return {key: can(record, effective, key) for key in FEATURE_KEYS}
