import pytest
from schedmate.billing.errors import MalformedEvent
from schedmate.billing.transitions import Activate, Cancel, HardExpire, Suspend
from schedmate.billing.webhooks import parse_event, transition_for
from conftest import utc


def _payload(event_type, resource=None, **extra):
    body = {
        "id": "WH-1",
        "event_type": event_type,
        "create_time": "2026-03-01T10:00:00Z",
        "resource": {"id": "I-SUB"} if resource is None else resource,
    }
    body.update(extra)
    return body


@pytest.mark.parametrize(
    "event_type, expected",
    [
        ("BILLING.SUBSCRIPTION.ACTIVATED", Activate),
        ("BILLING.SUBSCRIPTION.UPDATED", Activate),
        ("BILLING.SUBSCRIPTION.CANCELLED", Cancel),
        ("BILLING.SUBSCRIPTION.SUSPENDED", Suspend),
        ("BILLING.SUBSCRIPTION.EXPIRED", HardExpire),
        ("BILLING.SUBSCRIPTION.PAYMENT.FAILED", Suspend),
    ],
)
def test_event_maps_to_transition(event_type, expected):
    event = parse_event(_payload(event_type))
    assert event.subscription_id == "I-SUB"
    assert event.occurred_at == utc(2026, 3, 1, 10, 0, 0)
    assert isinstance(transition_for(event), expected)


def test_activation_grants_pro_and_carries_subscription():
    transition = transition_for(parse_event(_payload("BILLING.SUBSCRIPTION.ACTIVATED")))
    assert transition.plan == "pro"
    assert transition.subscription_id == "I-SUB"


def test_grace_days_come_from_caller():
    transition = transition_for(parse_event(_payload("BILLING.SUBSCRIPTION.CANCELLED")), grace_days=5)
    assert transition.grace_days == 5
    assert transition.occurred_at == utc(2026, 3, 1, 10, 0, 0)


@pytest.mark.parametrize("event_type", ["PAYMENT.SALE.DENIED", "PAYMENT.SALE.REFUNDED"])
def test_sale_events_key_on_billing_agreement(event_type):
    payload = _payload(event_type, resource={"id": "SALE-9", "billing_agreement_id": "I-SUB"})
    event = parse_event(payload)
    assert event.subscription_id == "I-SUB"
    assert isinstance(transition_for(event), Suspend)


def test_unknown_event_has_no_transition():
    event = parse_event(_payload("CHECKOUT.ORDER.APPROVED"))
    assert event.recognised is False
    assert transition_for(event) is None


def test_recognised_event_without_subscription_is_malformed():
    event = parse_event(_payload("BILLING.SUBSCRIPTION.CANCELLED", resource={}))
    with pytest.raises(MalformedEvent):
        transition_for(event)


@pytest.mark.parametrize("payload", [[], "x", {}, {"event_type": ""}, {"event_type": "X", "resource": []}])
def test_malformed_payloads(payload):
    with pytest.raises(MalformedEvent):
        parse_event(payload)


@pytest.mark.parametrize("create_time", ["yesterday", None])
def test_recognised_event_without_create_time_is_malformed(create_time):
    event = parse_event(_payload("BILLING.SUBSCRIPTION.SUSPENDED", create_time=create_time))
    assert event.occurred_at is None
    with pytest.raises(MalformedEvent):
        transition_for(event)


def test_unknown_event_needs_no_create_time():
    event = parse_event(_payload("CUSTOMER.DISPUTE.CREATED", create_time=None))
    assert transition_for(event) is None


def test_missing_resource_is_empty_not_malformed():
    payload = _payload("CHECKOUT.ORDER.APPROVED")
    del payload["resource"]
    assert parse_event(payload).resource == {}
