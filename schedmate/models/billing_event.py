from datetime import datetime, timezone
from sqlalchemy.dialects.postgresql import JSONB
from schedmate.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class BillingEventLog(db.Model):
    """Verified provider deliveries. Unverified ones are never written."""

    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    resource_id = db.Column(db.String(64), nullable=True, index=True)
    payload = db.Column(db.JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<BillingEventLog {self.provider_event_id} type={self.type!r} processed={self.processed_at is not None}>"
