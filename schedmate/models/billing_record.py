from datetime import datetime, timezone
from sqlalchemy import CheckConstraint
from schedmate.extensions import db
from schedmate.billing.state import BillingState


def _utcnow():
    return datetime.now(timezone.utc)


class BillingRecord(db.Model):
    """One row per account. Written only through the Reconciler (compare-and-set on `version`)."""

    __tablename__ = "billing_records"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer,
        db.ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
        index=True,
    )

    status = db.Column(db.String(16), nullable=False, index=True)
    plan = db.Column(db.String(16), nullable=False, default="starter")

    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    grace_until = db.Column(db.DateTime(timezone=True), nullable=True)

    # provider's id; webhooks reconcile on this, not account_id
    subscription_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    # event time of the last Activate; Cancel/Suspend older than this are stale
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    account = db.relationship("Account", back_populates="billing")

    __table_args__ = (
        CheckConstraint(
            "status IN ('trial','active','past_due','cancelled','expired','suspended')",
            name="ck_billing_records_status_valid",
        ),
        CheckConstraint(
            "plan IN ('starter','pro','owner')",
            name="ck_billing_records_plan_valid",
        ),
        CheckConstraint(
            "grace_until IS NULL OR status IN ('past_due','cancelled')",
            name="ck_billing_records_grace_only_in_grace_status",
        ),
    )

    def to_state(self) -> BillingState:
        return BillingState(
            account_id=self.account_id,
            status=self.status,
            plan=self.plan,
            trial_ends_at=self.trial_ends_at,
            grace_until=self.grace_until,
            subscription_id=self.subscription_id,
            activated_at=self.activated_at,
            version=self.version,
            updated_at=self.updated_at,
        )

    @staticmethod
    def columns_from_state(state: BillingState) -> dict:
        return {
            "status": state.status,
            "plan": state.plan,
            "trial_ends_at": state.trial_ends_at,
            "grace_until": state.grace_until,
            "subscription_id": state.subscription_id,
            "activated_at": state.activated_at,
            "version": state.version,
            "updated_at": state.updated_at,
        }

    @classmethod
    def from_state(cls, state: BillingState) -> "BillingRecord":
        return cls(account_id=state.account_id, **cls.columns_from_state(state))

    def __repr__(self) -> str:
        return f"<BillingRecord account_id={self.account_id} status={self.status!r} plan={self.plan!r} v{self.version}>"
