import json
from typing import Any, Dict, Mapping
from urllib.parse import quote

import httpx
from flask import current_app

# Header names PayPal signs deliveries with (case-insensitive on the wire)
HEADER_TRANSMISSION_ID = "PAYPAL-TRANSMISSION-ID"
HEADER_TRANSMISSION_TIME = "PAYPAL-TRANSMISSION-TIME"
HEADER_CERT_URL = "PAYPAL-CERT-URL"
HEADER_AUTH_ALGO = "PAYPAL-AUTH-ALGO"
HEADER_TRANSMISSION_SIG = "PAYPAL-TRANSMISSION-SIG"

SIGNATURE_HEADERS = (
    HEADER_TRANSMISSION_ID,
    HEADER_TRANSMISSION_TIME,
    HEADER_CERT_URL,
    HEADER_AUTH_ALGO,
    HEADER_TRANSMISSION_SIG,
)


class PayPalError(RuntimeError):
    """Transport/HTTP failure talking to PayPal."""


def missing_signature_headers(headers: Mapping[str, str]) -> list:
    return [name for name in SIGNATURE_HEADERS if not (headers.get(name) or "").strip()]


def _settings() -> Dict[str, Any]:
    cfg = current_app.config
    client_id = cfg.get("PAYPAL_CLIENT_ID")
    secret = cfg.get("PAYPAL_SECRET")
    if not client_id or not secret:
        raise RuntimeError("PAYPAL_CLIENT_ID / PAYPAL_SECRET are not configured")
    return {
        "base": (cfg.get("PAYPAL_API_BASE") or "").rstrip("/"),
        "auth": (client_id, secret),
        "timeout": httpx.Timeout(float(cfg.get("PAYPAL_HTTP_TIMEOUT", 10.0)), connect=5.0),
        "webhook_id": cfg.get("PAYPAL_WEBHOOK_ID"),
    }


def _client(settings: Dict[str, Any]) -> httpx.Client:
    return httpx.Client(base_url=settings["base"], timeout=settings["timeout"])


def _access_token(client: httpx.Client, settings: Dict[str, Any]) -> str:
    try:
        res = client.post(
            "/v1/oauth2/token",
            auth=settings["auth"],
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        res.raise_for_status()
    except httpx.HTTPError as exc:
        raise PayPalError(f"token request failed: {exc}") from exc
    token = res.json().get("access_token")
    if not token:
        raise PayPalError("token response without access_token")
    return token


def verify_webhook_signature(headers: Mapping[str, str], raw_body: bytes) -> bool:
    """
    Forward the delivery to PayPal's verify-webhook-signature API.
    Returns False on a negative verdict; raises PayPalError when PayPal can't be asked.
    """
    settings = _settings()
    if not settings["webhook_id"]:
        raise RuntimeError("PAYPAL_WEBHOOK_ID is not configured")
    try:
        webhook_event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return False

    body = {
        "transmission_id": headers.get(HEADER_TRANSMISSION_ID),
        "transmission_time": headers.get(HEADER_TRANSMISSION_TIME),
        "cert_url": headers.get(HEADER_CERT_URL),
        "auth_algo": headers.get(HEADER_AUTH_ALGO),
        "transmission_sig": headers.get(HEADER_TRANSMISSION_SIG),
        "webhook_id": settings["webhook_id"],
        "webhook_event": webhook_event,
    }
    with _client(settings) as client:
        token = _access_token(client, settings)
        try:
            res = client.post(
                "/v1/notifications/verify-webhook-signature",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise PayPalError(f"verify request failed: {exc}") from exc
    if res.status_code >= 500:
        raise PayPalError(f"verify returned {res.status_code}")
    if res.status_code != 200:
        current_app.logger.warning("paypal.verify.rejected", extra={"status_code": res.status_code})
        return False
    return res.json().get("verification_status") == "SUCCESS"


def get_subscription(subscription_id: str) -> Dict[str, Any]:
    """GET /v1/billing/subscriptions/{id}; returns the decoded subscription."""
    settings = _settings()
    with _client(settings) as client:
        token = _access_token(client, settings)
        try:
            res = client.get(
                f"/v1/billing/subscriptions/{quote(subscription_id, safe='')}",
                headers={"Authorization": f"Bearer {token}"},
            )
            res.raise_for_status()
        except httpx.HTTPError as exc:
            raise PayPalError(f"subscription lookup failed: {exc}") from exc
    return res.json()
