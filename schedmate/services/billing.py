from flask import current_app, g
from flask_login import current_user

from schedmate.billing.constants import (
    KEY_ACCOUNT,
    KEY_SUBSCRIPTION,
    PLAN_PRO,
    STATUS_EXPIRED,
    STATUS_TRIAL,
)
from schedmate.billing.context import BillingContext
from schedmate.billing.errors import BillingError, InvalidTransition, RecordNotFound
from schedmate.billing.reconciler import Reconciler, ReconcileResult
from schedmate.billing.store import SqlBillingStore
from schedmate.billing.transitions import Activate, EnsureExists, ExpireTrial, LinkSubscription
from schedmate.extensions import db
from schedmate.models import Account
from schedmate.services import paypal


def get_reconciler() -> Reconciler:
    cfg = current_app.config
    return Reconciler(
        SqlBillingStore(db.session),
        max_attempts=int(cfg.get("BILLING_CAS_MAX_ATTEMPTS", 5)),
    )


def create_account(*, email: str, password: str, business_name: str | None = None) -> Account:
    """Signup: account row + trial billing record (EnsureExists)."""
    account = Account(email=email.strip().lower(), business_name=business_name)
    account.set_password(password)
    db.session.add(account)
    # flushed, not committed: the trial insert commits both rows or neither
    db.session.flush()

    try:
        get_reconciler().apply(
            account.id,
            EnsureExists(account.id, status=STATUS_TRIAL, trial_days=int(current_app.config["BILLING_TRIAL_DAYS"])),
        )
    except BillingError:
        db.session.rollback()
        raise
    current_app.logger.info("billing.signup", extra={"account_id": account.id})
    return account


def load_billing_context(account_id: int) -> BillingContext:
    """
    Poll path. Materialises a missing row as the implicit expired/starter record
    and persists a lapsed trial, both through the Reconciler.
    """
    reconciler = get_reconciler()
    now = reconciler.clock()
    result = reconciler.apply(account_id, EnsureExists(account_id, status=STATUS_EXPIRED), now=now)
    record = result.record
    expired = reconciler.apply(account_id, ExpireTrial(), now=now)
    if expired.record is not None:
        record = expired.record
    return BillingContext(record, now=now)


def current_billing() -> BillingContext:
    """Request-scoped context for the logged-in account (built once per request)."""
    ctx = g.get("billing")
    if ctx is None:
        ctx = load_billing_context(int(current_user.id))
        g.billing = ctx
    return ctx


def link_subscription(account_id: int, subscription_id: str) -> ReconcileResult:
    """
    Attach a provider subscription after client-side approval, then ask the
    provider whether it is already ACTIVE (the webhook may lag or have been
    dropped while the row had no subscription id).

    The dashboard creates the subscription with custom_id=<account id>; a
    subscription carrying any other custom_id is refused.
    """
    reconciler = get_reconciler()
    owner = reconciler.store.get(subscription_id, KEY_SUBSCRIPTION)
    if owner is not None and owner.account_id != account_id:
        raise InvalidTransition(f"subscription {subscription_id!r} belongs to another account")

    remote = paypal.get_subscription(subscription_id)
    if str(remote.get("custom_id") or "") != str(account_id):
        current_app.logger.warning(
            "billing.link_subscription.foreign_subscription",
            extra={"account_id": account_id, "subscription_id": subscription_id},
        )
        raise InvalidTransition(f"subscription {subscription_id!r} was not created for this account")

    result = reconciler.apply(account_id, LinkSubscription(subscription_id))
    if result.record is None:
        raise RecordNotFound(account_id, KEY_ACCOUNT)
    if result.record.subscription_id != subscription_id:
        raise InvalidTransition("account already has a live subscription")

    if (remote.get("status") or "").upper() == "ACTIVE":
        result = reconciler.apply(
            subscription_id,
            Activate(PLAN_PRO, subscription_id=subscription_id),
            key_type=KEY_SUBSCRIPTION,
        )
    current_app.logger.info(
        "billing.link_subscription",
        extra={"account_id": account_id, "subscription_id": subscription_id, "remote_status": remote.get("status")},
    )
    return result
