from datetime import timedelta

import pytest
from schedmate.billing.constants import KEY_SUBSCRIPTION
from schedmate.billing.errors import ConflictRetryExhausted, TransientStoreFailure
from schedmate.billing.reconciler import (
    OUTCOME_APPLIED,
    OUTCOME_NOOP,
    OUTCOME_NOT_FOUND,
    OUTCOME_STALE,
    Reconciler,
)
from schedmate.billing.state import BillingState
from schedmate.billing.transitions import (
    Activate,
    Cancel,
    EnsureExists,
    ExpireTrial,
    HardExpire,
    LinkSubscription,
    Suspend,
)
from conftest import FakeStore, utc

T0 = utc(2026, 3, 1, 9, 0, 0)


def _rec(**fields):
    values = dict(account_id=1, status="trial", plan="starter", trial_ends_at=T0 + timedelta(days=7),
                  version=1, updated_at=T0)
    values.update(fields)
    return BillingState(**values)


def test_ensure_exists_creates_trial_once():
    store = FakeStore()
    rec = Reconciler(store)

    first = rec.apply(1, EnsureExists(1), now=T0)
    assert first.outcome == OUTCOME_APPLIED
    assert first.record.status == "trial"
    assert first.record.plan == "starter"
    assert first.record.trial_ends_at == T0 + timedelta(days=7)
    assert first.record.version == 1

    again = rec.apply(1, EnsureExists(1), now=T0 + timedelta(days=1))
    assert again.outcome == OUTCOME_NOOP
    assert store.rows[1].trial_ends_at == T0 + timedelta(days=7)
    assert store.writes == 1


def test_ensure_exists_lost_insert_race_rereads():
    store = FakeStore()
    store.before_write = lambda s: s.put(_rec(status="active", plan="pro", trial_ends_at=None))
    result = Reconciler(store).apply(1, EnsureExists(1), now=T0)
    assert result.outcome == OUTCOME_NOOP
    assert result.attempts == 2
    assert store.rows[1].status == "active"


def test_missing_record_is_not_found_for_other_transitions():
    store = FakeStore()
    result = Reconciler(store).apply("I-SUB", Cancel(occurred_at=T0), key_type=KEY_SUBSCRIPTION)
    assert result.outcome == OUTCOME_NOT_FOUND
    assert result.record is None
    assert store.rows == {}


def test_same_transition_twice_is_idempotent():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1"))
    rec = Reconciler(store)
    ev_time = T0 + timedelta(hours=1)

    first = rec.apply("I-1", Cancel(occurred_at=ev_time), key_type=KEY_SUBSCRIPTION, now=ev_time)
    second = rec.apply("I-1", Cancel(occurred_at=ev_time), key_type=KEY_SUBSCRIPTION, now=ev_time + timedelta(minutes=5))

    assert first.outcome == OUTCOME_APPLIED
    assert second.outcome == OUTCOME_NOOP
    assert store.writes == 1
    assert store.rows[1].grace_until == ev_time + timedelta(days=3)


def test_version_and_updated_at_advance_on_write():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1"))
    now = T0 + timedelta(hours=2)
    result = Reconciler(store).apply(1, HardExpire(), now=now)
    assert result.record.version == 2
    assert result.record.updated_at == now


def test_late_cancel_does_not_override_newer_activation():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1"))
    rec = Reconciler(store)
    t_cancel = T0 + timedelta(hours=1)
    t_activate = T0 + timedelta(hours=2)

    rec.apply("I-1", Cancel(occurred_at=t_cancel), key_type=KEY_SUBSCRIPTION, now=t_cancel)
    assert store.rows[1].status == "cancelled"

    rec.apply("I-1", Activate(subscription_id="I-1", occurred_at=t_activate), key_type=KEY_SUBSCRIPTION, now=t_activate)
    assert store.rows[1].status == "active"

    # the cancel is redelivered after the reactivation
    late = rec.apply("I-1", Cancel(occurred_at=t_cancel), key_type=KEY_SUBSCRIPTION, now=t_activate + timedelta(minutes=1))
    assert late.outcome == OUTCOME_STALE
    assert store.rows[1].status == "active"
    assert store.rows[1].grace_until is None


def test_suspend_newer_than_activation_applies():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1", activated_at=T0))
    t = T0 + timedelta(days=1)
    result = Reconciler(store).apply("I-1", Suspend(occurred_at=t), key_type=KEY_SUBSCRIPTION, now=t)
    assert result.outcome == OUTCOME_APPLIED
    assert store.rows[1].status == "past_due"
    assert store.rows[1].grace_until == t + timedelta(days=3)


def test_conflict_re_evaluates_against_fresh_record():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1"))
    t_cancel = T0 + timedelta(hours=1)

    def interloper(s):
        # an activation lands between our read and our write
        s.put(s.rows[1].evolve(version=2, updated_at=T0 + timedelta(hours=3), activated_at=T0 + timedelta(hours=3)))

    store.before_write = interloper
    result = Reconciler(store).apply("I-1", Cancel(occurred_at=t_cancel), key_type=KEY_SUBSCRIPTION, now=t_cancel)

    assert result.outcome == OUTCOME_STALE
    assert result.attempts == 2
    assert store.rows[1].status == "active"
    assert store.rows[1].version == 2


def test_conflict_then_success_uses_new_version():
    store = FakeStore(_rec(status="active", plan="pro"))

    def bump(s):
        s.put(s.rows[1].evolve(version=5))

    store.before_write = bump
    result = Reconciler(store).apply(1, HardExpire(), now=T0)
    assert result.outcome == OUTCOME_APPLIED
    assert result.record.version == 6


def test_exhausted_retries_raise():
    class AlwaysLoses(FakeStore):
        def upsert(self, record, expected_version=None):
            return False

    store = AlwaysLoses(_rec(status="active", plan="pro"))
    with pytest.raises(ConflictRetryExhausted) as exc:
        Reconciler(store, max_attempts=3).apply(1, HardExpire(), now=T0)
    assert exc.value.attempts == 3
    assert store.rows[1].status == "active"


def test_store_failure_propagates():
    store = FakeStore(_rec())
    store.fail_reads = True
    with pytest.raises(TransientStoreFailure):
        Reconciler(store).apply(1, ExpireTrial(), now=T0)


def test_expire_trial_only_after_deadline():
    store = FakeStore(_rec(trial_ends_at=T0))
    rec = Reconciler(store)
    assert rec.apply(1, ExpireTrial(), now=T0).outcome == OUTCOME_NOOP
    result = rec.apply(1, ExpireTrial(), now=T0 + timedelta(milliseconds=1))
    assert result.outcome == OUTCOME_APPLIED
    assert store.rows[1].status == "expired"


def test_expire_trial_ignores_non_trial():
    store = FakeStore(_rec(status="active", plan="pro", trial_ends_at=T0 - timedelta(days=30)))
    assert Reconciler(store).apply(1, ExpireTrial(), now=T0).outcome == OUTCOME_NOOP


def test_cancel_and_suspend_leave_expired_alone():
    store = FakeStore(_rec(status="expired", subscription_id="I-1", trial_ends_at=None))
    rec = Reconciler(store)
    assert rec.apply("I-1", Cancel(occurred_at=T0), key_type=KEY_SUBSCRIPTION).outcome == OUTCOME_NOOP
    assert rec.apply("I-1", Suspend(occurred_at=T0), key_type=KEY_SUBSCRIPTION).outcome == OUTCOME_NOOP
    assert store.rows[1].status == "expired"


def test_repeated_suspend_keeps_first_grace():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1", updated_at=T0))
    rec = Reconciler(store)
    first = T0 + timedelta(hours=1)
    second = T0 + timedelta(days=2)

    rec.apply("I-1", Suspend(occurred_at=first), key_type=KEY_SUBSCRIPTION, now=first)
    result = rec.apply("I-1", Suspend(occurred_at=second), key_type=KEY_SUBSCRIPTION, now=second)

    assert result.outcome == OUTCOME_NOOP
    assert store.rows[1].grace_until == first + timedelta(days=3)


def test_activate_clears_grace_and_keeps_subscription():
    store = FakeStore(_rec(status="past_due", plan="pro", subscription_id="I-1",
                           grace_until=T0 + timedelta(days=1)))
    result = Reconciler(store).apply("I-1", Activate(subscription_id="I-OTHER"), key_type=KEY_SUBSCRIPTION, now=T0)
    assert result.record.status == "active"
    assert result.record.grace_until is None
    assert result.record.subscription_id == "I-1"


def test_link_subscription_sets_once():
    store = FakeStore(_rec())
    rec = Reconciler(store)
    assert rec.apply(1, LinkSubscription("I-1"), now=T0).outcome == OUTCOME_APPLIED
    assert rec.apply(1, LinkSubscription("I-2"), now=T0).outcome == OUTCOME_NOOP
    assert store.rows[1].subscription_id == "I-1"


def test_link_subscription_replaces_dead_subscription():
    store = FakeStore(_rec(status="expired", subscription_id="I-OLD", trial_ends_at=None))
    result = Reconciler(store).apply(1, LinkSubscription("I-NEW"), now=T0)
    assert result.outcome == OUTCOME_APPLIED
    assert store.rows[1].subscription_id == "I-NEW"


def test_hard_expire_on_record_in_grace():
    store = FakeStore(_rec(status="cancelled", plan="pro", subscription_id="I-1",
                           grace_until=T0 + timedelta(days=2)))
    result = Reconciler(store).apply("I-1", HardExpire(occurred_at=T0), key_type=KEY_SUBSCRIPTION, now=T0)
    assert result.record.status == "expired"
    assert result.record.grace_until is None


def test_unknown_key_type_rejected():
    with pytest.raises(ValueError):
        Reconciler(FakeStore()).apply(1, ExpireTrial(), key_type="email")


def test_cancel_newer_than_late_delivered_activation_applies():
    store = FakeStore(_rec(subscription_id="I-1"))
    rec = Reconciler(store)
    t_activate = utc(2026, 3, 1, 10, 0, 0)
    t_cancel = utc(2026, 3, 1, 10, 15, 0)

    # the activation is delivered after the cancel was created
    rec.apply("I-1", Activate(subscription_id="I-1", occurred_at=t_activate), key_type=KEY_SUBSCRIPTION,
              now=utc(2026, 3, 1, 10, 30, 0))
    assert store.rows[1].activated_at == t_activate

    now = utc(2026, 3, 1, 10, 31, 0)
    result = rec.apply("I-1", Cancel(occurred_at=t_cancel), key_type=KEY_SUBSCRIPTION, now=now)
    assert result.outcome == OUTCOME_APPLIED
    assert store.rows[1].status == "cancelled"
    assert store.rows[1].grace_until == now + timedelta(days=3)


def test_grace_starts_when_the_downgrade_is_applied():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1"))
    created = T0 - timedelta(days=4)
    result = Reconciler(store).apply("I-1", Cancel(occurred_at=created), key_type=KEY_SUBSCRIPTION, now=T0)
    assert result.outcome == OUTCOME_APPLIED
    assert store.rows[1].grace_until == T0 + timedelta(days=3)


def test_older_activation_redelivered_keeps_latest_activation_time():
    store = FakeStore(_rec(status="active", plan="pro", subscription_id="I-1", activated_at=T0))
    result = Reconciler(store).apply(
        "I-1", Activate(occurred_at=T0 - timedelta(days=1)), key_type=KEY_SUBSCRIPTION, now=T0 + timedelta(hours=1)
    )
    assert result.outcome == OUTCOME_NOOP
    assert store.rows[1].activated_at == T0


def test_activate_never_demotes_owner():
    store = FakeStore(_rec(status="past_due", plan="owner", subscription_id="I-1",
                           grace_until=T0 + timedelta(days=1)))
    result = Reconciler(store).apply("I-1", Activate("pro", occurred_at=T0), key_type=KEY_SUBSCRIPTION, now=T0)
    assert result.record.status == "active"
    assert result.record.plan == "owner"
