from datetime import datetime
from typing import Dict, Optional

from .evaluator import EffectiveStatus, evaluate
from .features import can, feature_map
from .state import BillingState, utcnow


class BillingContext:
    """
    Per-request (or per-session) view of one account's billing.

    Built once from a record snapshot and a clock reading; answers the two
    questions UI code asks: can(feature) and get_effective_status().
    """

    def __init__(self, record: BillingState, now: Optional[datetime] = None, stale: bool = False):
        self.record = record
        self.now = now or utcnow()
        self.stale = stale
        self._effective = evaluate(record, self.now)

    @property
    def effective(self) -> EffectiveStatus:
        return self._effective

    def get_effective_status(self) -> EffectiveStatus:
        return self._effective

    def can(self, feature: str) -> bool:
        return can(self.record, self._effective, feature)

    def features(self) -> Dict[str, bool]:
        return feature_map(self.record, self._effective)

    def to_dict(self) -> dict:
        payload = self.record.to_dict()
        payload.pop("version", None)
        payload.update(self._effective.to_dict())
        payload["stored_status"] = self.record.status
        payload["features"] = self.features()
        payload["stale"] = self.stale
        return payload
