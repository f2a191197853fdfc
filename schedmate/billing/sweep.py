import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .constants import KEY_ACCOUNT, SWEEP_STATUSES
from .errors import ConflictRetryExhausted
from .reconciler import Reconciler
from .transitions import ExpireTrial

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    expired: int = 0
    failed: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"scanned": self.scanned, "expired": self.expired, "failed": list(self.failed)}


def run_sweep(reconciler: Reconciler, now: Optional[datetime] = None) -> SweepReport:
    """
    Expire lapsed trials across all accounts.

    One record losing its compare-and-set race does not stop the sweep; it is
    reported and picked up again next tick. Store failures propagate so the
    scheduler sees the run fail.
    """
    now = now or reconciler.clock()
    report = SweepReport()
    for record in reconciler.store.query(statuses=SWEEP_STATUSES):
        report.scanned += 1
        try:
            result = reconciler.apply(record.account_id, ExpireTrial(), key_type=KEY_ACCOUNT, now=now)
        except ConflictRetryExhausted:
            logger.warning("billing.sweep.conflict", extra={"account_id": record.account_id})
            report.failed.append(record.account_id)
            continue
        if result.applied:
            report.expired += 1
    logger.info("billing.sweep.done", extra=report.to_dict())
    return report
