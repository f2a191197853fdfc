import os
from flask import Flask, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") not in ("staging", "production"):
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter
from .security import init_security
from .observability import init_logging, init_sentry

_REQUIRED_IN_PROD = (
    "SECRET_KEY",
    "DATABASE_URL",
    "PAYPAL_CLIENT_ID",
    "PAYPAL_SECRET",
    "PAYPAL_WEBHOOK_ID",
)


def create_app():
    app = Flask(__name__)

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    app.config["APP_ENV"] = app_env

    # --- Required env validation for prod-like envs (staging/production) ---
    if app_env in ("staging", "production"):
        for name in _REQUIRED_IN_PROD:
            if not (os.getenv(name) or app.config.get(name)):
                raise RuntimeError(f"Missing required environment variable: {name}")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Models must be imported before create_all / migrations see metadata
    from . import models  # noqa: F401

    from .blueprints.billing import bp as billing_bp
    from .blueprints.webhooks import bp as webhooks_bp
    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    @limiter.exempt
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    # Error handlers: JSON everywhere, this is an API surface
    @app.errorhandler(400)
    def bad_request(e):
        return {"error": "bad_request", "code": 400, "detail": getattr(e, "description", None)}, 400

    @app.errorhandler(401)
    def unauthorized(e):
        return {"error": "unauthorized", "code": 401}, 401

    @app.errorhandler(403)
    def forbidden(e):
        return {"error": "forbidden", "code": 403}, 403

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "not_found", "code": 404}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "method_not_allowed", "code": 405}, 405

    @app.errorhandler(500)
    def server_error(e):
        return {"error": "internal_error", "code": 500}, 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError
    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return {"error": "csrf_failed", "code": 400, "detail": e.description}, 400

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return jsonify(payload), 429, headers

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    if not app.config.get("PAYPAL_WEBHOOK_ID"):
        app.logger.warning("PAYPAL_WEBHOOK_ID missing; webhook deliveries will fail verification")

    return app
