from .account import Account
from .billing_record import BillingRecord
from .billing_event import BillingEventLog

__all__ = ["Account", "BillingRecord", "BillingEventLog"]
