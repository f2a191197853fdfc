"""
Provider event normalisation: one delivery -> at most one transition.

Unrecognised event types map to no transition; the endpoint acknowledges
them so the provider stops redelivering.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from .constants import DEFAULT_GRACE_DAYS, PLAN_PRO
from .errors import MalformedEvent
from .state import as_utc
from .transitions import Activate, Cancel, HardExpire, Suspend, Transition

EVENT_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
EVENT_UPDATED = "BILLING.SUBSCRIPTION.UPDATED"
EVENT_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
EVENT_SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
EVENT_EXPIRED = "BILLING.SUBSCRIPTION.EXPIRED"
EVENT_PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"
EVENT_SALE_DENIED = "PAYMENT.SALE.DENIED"
EVENT_SALE_REFUNDED = "PAYMENT.SALE.REFUNDED"

_TransitionFactory = Callable[["WebhookEvent", int], Transition]

EVENT_TRANSITIONS: Dict[str, _TransitionFactory] = {
    EVENT_ACTIVATED: lambda ev, grace: Activate(PLAN_PRO, subscription_id=ev.subscription_id, occurred_at=ev.occurred_at),
    EVENT_UPDATED: lambda ev, grace: Activate(PLAN_PRO, subscription_id=ev.subscription_id, occurred_at=ev.occurred_at),
    EVENT_CANCELLED: lambda ev, grace: Cancel(grace_days=grace, occurred_at=ev.occurred_at),
    EVENT_SUSPENDED: lambda ev, grace: Suspend(grace_days=grace, occurred_at=ev.occurred_at),
    EVENT_EXPIRED: lambda ev, grace: HardExpire(occurred_at=ev.occurred_at),
    EVENT_PAYMENT_FAILED: lambda ev, grace: Suspend(grace_days=grace, occurred_at=ev.occurred_at),
    EVENT_SALE_DENIED: lambda ev, grace: Suspend(grace_days=grace, occurred_at=ev.occurred_at),
    EVENT_SALE_REFUNDED: lambda ev, grace: Suspend(grace_days=grace, occurred_at=ev.occurred_at),
}

# Sale events carry the subscription under billing_agreement_id, not resource.id
_SUBSCRIPTION_ID_FIELD = {
    EVENT_SALE_DENIED: "billing_agreement_id",
    EVENT_SALE_REFUNDED: "billing_agreement_id",
}


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    event_id: Optional[str] = None
    subscription_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    resource: dict = field(default_factory=dict)

    @property
    def recognised(self) -> bool:
        return self.event_type in EVENT_TRANSITIONS


def _parse_time(value) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_event(payload) -> WebhookEvent:
    """Shape: {event_type, id?, create_time?, resource: {id, ...}}."""
    if not isinstance(payload, dict):
        raise MalformedEvent("webhook body must be a JSON object")
    event_type = payload.get("event_type")
    if not event_type or not isinstance(event_type, str):
        raise MalformedEvent("missing event_type")
    resource = payload.get("resource")
    if resource is None:
        resource = {}
    if not isinstance(resource, dict):
        raise MalformedEvent("resource must be an object")

    sub_field = _SUBSCRIPTION_ID_FIELD.get(event_type, "id")
    subscription_id = resource.get(sub_field)
    return WebhookEvent(
        event_type=event_type,
        event_id=payload.get("id") or None,
        subscription_id=str(subscription_id) if subscription_id else None,
        occurred_at=_parse_time(payload.get("create_time")),
        resource=resource,
    )


def transition_for(event: WebhookEvent, grace_days: int = DEFAULT_GRACE_DAYS) -> Optional[Transition]:
    factory = EVENT_TRANSITIONS.get(event.event_type)
    if factory is None:
        return None
    if not event.subscription_id:
        raise MalformedEvent(f"{event.event_type} without a subscription id")
    if event.occurred_at is None:
        # create_time orders Cancel/Suspend against Activate
        raise MalformedEvent(f"{event.event_type} without a valid create_time")
    return factory(event, grace_days)
