from flask import request, current_app, jsonify, session
from flask_login import login_required, current_user
from . import bp
from schedmate.extensions import limiter
from schedmate.billing.errors import (
    ConflictRetryExhausted,
    InvalidTransition,
    RecordNotFound,
    TransientStoreFailure,
)
from schedmate.services import billing as billing_service
from schedmate.services.paypal import PayPalError

_LAST_KNOWN_KEY = "billing_last_known"


def _status_payload(ctx) -> dict:
    payload = ctx.to_dict()
    payload["poll_interval_seconds"] = int(current_app.config["BILLING_POLL_INTERVAL_SECONDS"])
    return payload


@bp.get("/status.json")
@limiter.limit("120 per minute")
@login_required
def status_json():
    """
    The dashboard's poll endpoint (every BILLING_POLL_INTERVAL_SECONDS).
    Store trouble fails soft: serve the last known status instead of locking the UI.
    """
    try:
        ctx = billing_service.current_billing()
    except (TransientStoreFailure, ConflictRetryExhausted):
        current_app.logger.warning(
            "billing.status.store_unavailable", extra={"account_id": current_user.id}, exc_info=True
        )
        last_known = session.get(_LAST_KNOWN_KEY)
        if not last_known:
            return jsonify({"error": "billing_unavailable"}), 503
        return jsonify({**last_known, "stale": True}), 200

    payload = _status_payload(ctx)
    session[_LAST_KNOWN_KEY] = payload
    return jsonify(payload)


@bp.get("/can/<feature>.json")
@login_required
def can_json(feature: str):
    try:
        ctx = billing_service.current_billing()
    except (TransientStoreFailure, ConflictRetryExhausted):
        last_known = session.get(_LAST_KNOWN_KEY) or {}
        allowed = bool((last_known.get("features") or {}).get(feature, False))
        return jsonify({"feature": feature, "allowed": allowed, "stale": True})
    return jsonify({"feature": feature, "allowed": ctx.can(feature)})


@bp.post("/subscription.json")
@limiter.limit("10/minute")
@login_required
def link_subscription_json():
    """
    Called by the PayPal button's onApprove with the new subscription id.
    Mirrors the webhook's effect when PayPal already reports the subscription ACTIVE.
    """
    data = request.get_json(silent=True) or {}
    subscription_id = (data.get("subscription_id") or "").strip()
    if not subscription_id:
        return jsonify({"error": "Missing subscription_id"}), 400

    account_id = int(current_user.id)
    try:
        billing_service.link_subscription(account_id, subscription_id)
    except InvalidTransition as e:
        return jsonify({"error": "subscription_conflict", "detail": str(e)}), 409
    except RecordNotFound:
        return jsonify({"error": "no_billing_record"}), 404
    except PayPalError:
        current_app.logger.exception(
            "billing.link_subscription.paypal_failed",
            extra={"account_id": account_id, "subscription_id": subscription_id},
        )
        return jsonify({"error": "paypal_unavailable"}), 502
    except (TransientStoreFailure, ConflictRetryExhausted):
        current_app.logger.exception("billing.link_subscription.store_failed", extra={"account_id": account_id})
        return jsonify({"error": "billing_unavailable"}), 503

    ctx = billing_service.load_billing_context(account_id)
    payload = _status_payload(ctx)
    session[_LAST_KNOWN_KEY] = payload
    return jsonify(payload)
