"""
Billing transitions.

Each transition is a small value object with ``next_state(record, now)``
returning the record it wants written, or ``None`` when it does not apply.
Returning a state equal to the current one is also a no-op: the Reconciler
skips the write, which is what makes redelivery idempotent.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .constants import (
    DEFAULT_GRACE_DAYS,
    DEFAULT_TRIAL_DAYS,
    PLAN_CHOICES,
    PLAN_OWNER,
    PLAN_PRO,
    PLAN_STARTER,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_PAST_DUE,
    STATUS_TRIAL,
)
from .evaluator import trial_lapsed
from .state import BillingState, as_utc


class Transition:
    name = "transition"
    occurred_at: Optional[datetime] = None

    def next_state(self, record: BillingState, now: datetime) -> Optional[BillingState]:
        raise NotImplementedError

    def is_stale_for(self, record: BillingState) -> bool:
        return False

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class EnsureExists(Transition):
    account_id: int
    status: str = STATUS_TRIAL
    trial_days: int = DEFAULT_TRIAL_DAYS

    name = "ensure_exists"

    def materialize(self, now: datetime) -> BillingState:
        if self.status == STATUS_TRIAL:
            return BillingState(
                account_id=self.account_id,
                status=STATUS_TRIAL,
                plan=PLAN_STARTER,
                trial_ends_at=as_utc(now) + timedelta(days=self.trial_days),
            )
        # implicit "no row" record for an account that predates billing
        return BillingState(account_id=self.account_id, status=self.status, plan=PLAN_STARTER)

    def next_state(self, record, now):
        return None


@dataclass(frozen=True)
class ExpireTrial(Transition):
    name = "expire_trial"

    def next_state(self, record, now):
        if not trial_lapsed(record, now):
            return None
        return record.evolve(status=STATUS_EXPIRED, grace_until=None)


@dataclass(frozen=True)
class Activate(Transition):
    plan: str = PLAN_PRO
    subscription_id: Optional[str] = None
    occurred_at: Optional[datetime] = None

    name = "activate"

    def __post_init__(self):
        if self.plan not in PLAN_CHOICES:
            raise ValueError(f"unknown plan {self.plan!r}")

    def next_state(self, record, now):
        activated_at = as_utc(self.occurred_at or now)
        if record.activated_at is not None and record.activated_at > activated_at:
            activated_at = record.activated_at
        return record.evolve(
            status=STATUS_ACTIVE,
            # owner is granted by ops and never downgraded by a provider event
            plan=PLAN_OWNER if record.plan == PLAN_OWNER else self.plan,
            grace_until=None,
            subscription_id=record.subscription_id or self.subscription_id,
            activated_at=activated_at,
        )


@dataclass(frozen=True)
class _GraceDowngrade(Transition):
    grace_days: int = DEFAULT_GRACE_DAYS
    occurred_at: Optional[datetime] = None

    target_status = STATUS_CANCELLED

    def is_stale_for(self, record):
        # an Activate whose event time is later than this one wins
        return (
            record.status == STATUS_ACTIVE
            and self.occurred_at is not None
            and record.activated_at is not None
            and record.activated_at > as_utc(self.occurred_at)
        )

    def next_state(self, record, now):
        if record.status == STATUS_EXPIRED:
            # terminal until a new Activate
            return None
        if record.status == self.target_status and record.grace_until is not None:
            # redelivery / repeated failure notice: never extend the window
            grace_until = record.grace_until
        else:
            grace_until = as_utc(now) + timedelta(days=self.grace_days)
        return record.evolve(status=self.target_status, grace_until=grace_until)


@dataclass(frozen=True)
class Cancel(_GraceDowngrade):
    name = "cancel"
    target_status = STATUS_CANCELLED


@dataclass(frozen=True)
class Suspend(_GraceDowngrade):
    name = "suspend"
    target_status = STATUS_PAST_DUE


@dataclass(frozen=True)
class HardExpire(Transition):
    occurred_at: Optional[datetime] = None

    name = "hard_expire"

    def next_state(self, record, now):
        return record.evolve(status=STATUS_EXPIRED, grace_until=None)


@dataclass(frozen=True)
class LinkSubscription(Transition):
    subscription_id: str = ""

    name = "link_subscription"

    def next_state(self, record, now):
        if not self.subscription_id or record.subscription_id == self.subscription_id:
            return None
        if record.subscription_id and record.status != STATUS_EXPIRED:
            # stable once set; a dead subscription may be replaced
            return None
        return record.evolve(subscription_id=self.subscription_id)
