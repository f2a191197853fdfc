# Plain strings + CHECK constraints in the table; no DB enums.
STATUS_TRIAL = "trial"
STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"
STATUS_SUSPENDED = "suspended"
STATUS_CHOICES = (
    STATUS_TRIAL,
    STATUS_ACTIVE,
    STATUS_PAST_DUE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_SUSPENDED,
)

# Statuses that may carry a grace deadline
GRACE_STATUSES = frozenset({STATUS_PAST_DUE, STATUS_CANCELLED})
# Statuses that lock the dashboard once outside grace
LOCKING_STATUSES = frozenset({STATUS_EXPIRED, STATUS_CANCELLED, STATUS_PAST_DUE, STATUS_SUSPENDED})
# What the sweep scans
SWEEP_STATUSES = (STATUS_TRIAL, STATUS_PAST_DUE, STATUS_CANCELLED)

PLAN_STARTER = "starter"
PLAN_PRO = "pro"
PLAN_OWNER = "owner"
PLAN_CHOICES = (PLAN_STARTER, PLAN_PRO, PLAN_OWNER)

KEY_ACCOUNT = "account_id"
KEY_SUBSCRIPTION = "subscription_id"
KEY_TYPES = (KEY_ACCOUNT, KEY_SUBSCRIPTION)

DEFAULT_TRIAL_DAYS = 7
DEFAULT_GRACE_DAYS = 3
