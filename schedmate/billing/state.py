from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from .constants import (
    GRACE_STATUSES,
    PLAN_CHOICES,
    PLAN_STARTER,
    STATUS_ACTIVE,
    STATUS_CHOICES,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class BillingState:
    """
    Detached snapshot of one account's billing row.

    The Reconciler and the Status Evaluator only ever see these; the ORM row
    stays inside the store. `version` is the compare-and-set token.
    """

    account_id: int
    status: str
    plan: str = PLAN_STARTER
    trial_ends_at: Optional[datetime] = None
    grace_until: Optional[datetime] = None
    subscription_id: Optional[str] = None
    # nominal time of the Activate that produced the current active period
    activated_at: Optional[datetime] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.status not in STATUS_CHOICES:
            raise ValueError(f"unknown billing status {self.status!r}")
        if self.plan not in PLAN_CHOICES:
            raise ValueError(f"unknown plan {self.plan!r}")
        if self.grace_until is not None and self.status not in GRACE_STATUSES:
            raise ValueError(f"grace_until set while status={self.status!r}")
        if self.status == STATUS_ACTIVE and self.grace_until is not None:
            raise ValueError("active record cannot carry a grace deadline")
        # normalise timestamps so comparisons never mix naive/aware
        for name in ("trial_ends_at", "grace_until", "activated_at", "updated_at"):
            object.__setattr__(self, name, as_utc(getattr(self, name)))

    def evolve(self, **changes) -> "BillingState":
        return replace(self, **changes)

    def same_as(self, other: "BillingState") -> bool:
        """Equal in everything a transition can change (ignores version/updated_at)."""
        return (
            self.account_id == other.account_id
            and self.status == other.status
            and self.plan == other.plan
            and self.trial_ends_at == other.trial_ends_at
            and self.grace_until == other.grace_until
            and self.subscription_id == other.subscription_id
            and self.activated_at == other.activated_at
        )

    def to_dict(self) -> dict:
        def _iso(dt):
            return dt.isoformat() if dt else None

        return {
            "account_id": self.account_id,
            "status": self.status,
            "plan": self.plan,
            "trial_ends_at": _iso(self.trial_ends_at),
            "grace_until": _iso(self.grace_until),
            "subscription_id": self.subscription_id,
            "activated_at": _iso(self.activated_at),
            "version": self.version,
            "updated_at": _iso(self.updated_at),
        }
