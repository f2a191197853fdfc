import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .constants import (
    GRACE_STATUSES,
    LOCKING_STATUSES,
    PLAN_OWNER,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_TRIAL,
)
from .state import BillingState, as_utc

_DAY = timedelta(days=1)


@dataclass(frozen=True)
class EffectiveStatus:
    locked: bool
    in_grace: bool = False
    trial_days_left: Optional[int] = None
    # read-time view; "expired" for a lapsed trial the Reconciler hasn't written yet
    status: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "locked": self.locked,
            "in_grace": self.in_grace,
            "trial_days_left": self.trial_days_left,
        }


def trial_days_left(record: BillingState, now: datetime) -> Optional[int]:
    if record.status != STATUS_TRIAL or record.trial_ends_at is None:
        return None
    remaining = (record.trial_ends_at - as_utc(now)) / _DAY
    return max(0, math.ceil(remaining))


def trial_lapsed(record: BillingState, now: datetime) -> bool:
    return (
        record.status == STATUS_TRIAL
        and record.trial_ends_at is not None
        and as_utc(now) > record.trial_ends_at
    )


def grace_active(record: BillingState, now: datetime) -> bool:
    return (
        record.status in GRACE_STATUSES
        and record.grace_until is not None
        and as_utc(now) < record.grace_until
    )


def evaluate(record: BillingState, now: datetime) -> EffectiveStatus:
    """
    Map a stored record + clock to what the UI should enforce.

    Pure: a lapsed trial is *reported* as expired here but only the
    Reconciler persists it (lazy expiry).
    """
    if record.plan == PLAN_OWNER:
        return EffectiveStatus(locked=False, status=record.status)

    if record.status == STATUS_TRIAL:
        if trial_lapsed(record, now):
            return EffectiveStatus(locked=True, trial_days_left=0, status=STATUS_EXPIRED)
        return EffectiveStatus(
            locked=False,
            trial_days_left=trial_days_left(record, now),
            status=STATUS_TRIAL,
        )

    if grace_active(record, now):
        return EffectiveStatus(locked=False, in_grace=True, status=record.status)

    if record.status in LOCKING_STATUSES:
        return EffectiveStatus(locked=True, status=record.status)

    if record.status == STATUS_ACTIVE:
        return EffectiveStatus(locked=False, status=record.status)

    # every status is covered above; fail closed if the enum grows
    return EffectiveStatus(locked=True, status=record.status)
