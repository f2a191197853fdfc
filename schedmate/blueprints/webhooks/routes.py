import json
from datetime import datetime, timezone
from flask import request, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError
from . import bp
from schedmate.extensions import db, csrf
from schedmate.models import BillingEventLog
from schedmate.billing.constants import KEY_SUBSCRIPTION
from schedmate.billing.errors import (
    AuthenticationFailure,
    BillingError,
    ConflictRetryExhausted,
    MalformedEvent,
    TransientStoreFailure,
)
from schedmate.billing.reconciler import OUTCOME_NOT_FOUND
from schedmate.billing.webhooks import parse_event, transition_for
from schedmate.services.billing import get_reconciler
from schedmate.services.paypal import PayPalError, missing_signature_headers, verify_webhook_signature


def _mark_processed(log, notes: str):
    if log is None:
        return
    log.notes = notes[:255]
    log.processed_at = datetime.now(timezone.utc)
    db.session.commit()


def _authenticate(raw_bytes: bytes):
    """Raises AuthenticationFailure; PayPalError when PayPal cannot be asked."""
    missing = missing_signature_headers(request.headers)
    if missing:
        raise AuthenticationFailure("missing_signature_headers", missing=missing)
    if not verify_webhook_signature(request.headers, raw_bytes):
        raise AuthenticationFailure("invalid_signature")


def _delivery_log(event, payload):
    """
    Fetch-or-create the audit row for this provider event id.
    Returns (log, already_processed).
    """
    if not event.event_id:
        return None, False
    log = BillingEventLog.query.filter_by(provider_event_id=event.event_id).first()
    if log is not None and log.processed_at is not None:
        return log, True
    if log is None:
        log = BillingEventLog(
            provider_event_id=event.event_id,
            type=event.event_type,
            resource_id=event.subscription_id,
            payload=payload,
        )
        db.session.add(log)
    log.attempts = (log.attempts or 0) + 1
    db.session.commit()
    return log, False


# ----- PayPal Webhook (subscription lifecycle) -----
@csrf.exempt
@bp.post("/paypal")
def paypal_webhook():
    """
    PayPal -> /webhooks/paypal
    Verifies the delivery with PayPal, then turns it into at most one
    Reconciler transition keyed by subscription id.
      200: applied / ignored / duplicate / no matching record
      400: missing headers, bad signature, malformed payload (nothing written)
      500: PayPal or store unavailable; PayPal redelivers
    """
    # 1) Raw body first; never parse before verification
    raw_bytes = request.get_data(cache=True, as_text=False) or b""

    try:
        _authenticate(raw_bytes)
    except AuthenticationFailure as exc:
        current_app.logger.warning(
            f"paypal_webhook.{exc.reason}",
            extra={"missing": exc.missing, "transmission_id": request.headers.get("PAYPAL-TRANSMISSION-ID")},
        )
        body = {"error": exc.reason}
        if exc.missing:
            body["missing"] = exc.missing
        return jsonify(body), 400
    except (PayPalError, RuntimeError):
        current_app.logger.exception("paypal_webhook.verification_error")
        return jsonify({"error": "verification_unavailable"}), 500

    # 2) Normalise
    try:
        payload = json.loads(raw_bytes.decode("utf-8"))
        event = parse_event(payload)
        transition = transition_for(event, grace_days=int(current_app.config["BILLING_GRACE_DAYS"]))
    except (UnicodeDecodeError, ValueError, MalformedEvent) as exc:
        current_app.logger.warning("paypal_webhook.malformed_event", extra={"reason": str(exc)})
        return jsonify({"error": "malformed_event"}), 400

    try:
        # 3) Delivery log + short-circuit on already-processed redelivery
        log, duplicate = _delivery_log(event, payload)
        if duplicate:
            return jsonify({"ok": True, "duplicate": True}), 200

        if transition is None:
            current_app.logger.info("paypal_webhook.ignored", extra={"event_type": event.event_type})
            _mark_processed(log, "ignored")
            return jsonify({"ok": True, "ignored": True}), 200

        # 4) Reconcile; the single conditional write is the commit point
        result = get_reconciler().apply(event.subscription_id, transition, key_type=KEY_SUBSCRIPTION)

        if result.outcome == OUTCOME_NOT_FOUND:
            current_app.logger.warning(
                "paypal_webhook.no_billing_record",
                extra={"event_type": event.event_type, "subscription_id": event.subscription_id},
            )
        _mark_processed(log, f"{transition}:{result.outcome}")
    except (TransientStoreFailure, ConflictRetryExhausted, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception(
            "paypal_webhook.reconcile_failed",
            extra={"event_type": event.event_type, "subscription_id": event.subscription_id},
        )
        return jsonify({"error": "retry_later"}), 500
    except BillingError:
        db.session.rollback()
        current_app.logger.exception("paypal_webhook.rejected_write", extra={"event_type": event.event_type})
        return jsonify({"error": "internal_error"}), 500

    return jsonify({"ok": True, "event_type": event.event_type, "outcome": result.outcome}), 200
