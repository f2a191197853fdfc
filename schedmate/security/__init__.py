from flask_talisman import Talisman


def init_security(app):
    """
    Production/staging security headers with a conservative CSP.
    PayPal's JS SDK renders the subscribe button; everything else is same-origin.
    """
    csp = {
        "default-src": ["'self'"],
        "script-src":  ["'self'", "https://www.paypal.com"],
        "style-src":   ["'self'", "'unsafe-inline'"],
        "img-src":     ["'self'", "data:", "https://www.paypalobjects.com"],
        "font-src":    ["'self'", "data:"],
        "connect-src": ["'self'", "https://www.paypal.com"],
        "frame-src":   ["'self'", "https://www.paypal.com", "https://www.sandbox.paypal.com"],
        "frame-ancestors": ["'self'"],
        "base-uri":    ["'self'"],
        "form-action": ["'self'"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="SAMEORIGIN",
        referrer_policy="strict-origin-when-cross-origin",
    )
