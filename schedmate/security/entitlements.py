from functools import wraps
from typing import Callable
from flask import request, redirect, jsonify, abort, current_app
from flask_login import current_user
from schedmate.services.billing import current_billing


def _wants_json() -> bool:
    # Match the app's JSON detection style (see 429 handler)
    return (
        "application/json" in (request.headers.get("Accept") or "").lower()
        or request.is_json
        or request.path.endswith(".json")
    )


def _blocked(missing: str):
    if _wants_json():
        return jsonify({"error": "entitlement_required", "missing": missing}), 403
    # the dashboard shell renders the upgrade prompt there
    return redirect(current_app.config.get("BILLING_UPGRADE_URL", "/billing/manage"))


def require_feature(feature: str) -> Callable:
    """
    Server-side guard for plan features.
    - Requires a logged-in account
    - Requires can(feature) on the request's billing context
    """
    def decorator(fn: Callable) -> Callable:
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not getattr(current_user, "is_authenticated", False):
                abort(401)
            if not current_billing().can(feature):
                return _blocked(feature)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


# --- Coarse gating (HTML redirect vs JSON 403) ---

def enforce_unlocked():
    """
    Returns None when the account is not locked; otherwise a redirect (HTML)
    or (payload, 403) for JSON. Usable as a blueprint before_request hook.
    Owner plan and grace windows are never locked.
    """
    if not getattr(current_user, "is_authenticated", False):
        abort(401)
    if not current_billing().get_effective_status().locked:
        return None
    return _blocked("active_subscription")
