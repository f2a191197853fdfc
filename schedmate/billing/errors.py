class BillingError(Exception):
    """Base for billing core failures."""


class AuthenticationFailure(BillingError):
    """Webhook delivery failed provider signature verification."""

    def __init__(self, reason: str, missing=()):
        super().__init__(reason)
        self.reason = reason
        self.missing = list(missing)


class RecordNotFound(BillingError):
    """No billing record for the given account/subscription."""

    def __init__(self, key, key_type):
        super().__init__(f"no billing record for {key_type}={key!r}")
        self.key = key
        self.key_type = key_type


class ConflictRetryExhausted(BillingError):
    """Optimistic write kept losing the race; caller should retry the whole unit of work."""

    def __init__(self, key, attempts: int):
        super().__init__(f"compare-and-set on {key!r} lost {attempts} times")
        self.key = key
        self.attempts = attempts


class TransientStoreFailure(BillingError):
    """Billing store unreachable or the write failed; never swallowed."""


class MalformedEvent(BillingError):
    """Provider payload missing the fields we key on."""


class InvalidTransition(BillingError):
    """Write rejected by a store constraint (e.g. subscription id already linked elsewhere)."""
