"""
Reconciler: the single write path for billing records.

Every writer (client poll, scheduled sweep, provider webhooks, ops CLI) goes
through ``Reconciler.apply``. Writes are compare-and-set on the row version;
a lost race re-reads and re-evaluates the transition against the fresh row
instead of overwriting it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence

from .constants import KEY_ACCOUNT, KEY_TYPES
from .errors import ConflictRetryExhausted
from .state import BillingState, as_utc, utcnow
from .transitions import EnsureExists, Transition

logger = logging.getLogger(__name__)

OUTCOME_APPLIED = "applied"
OUTCOME_NOOP = "noop"
OUTCOME_STALE = "stale"
OUTCOME_NOT_FOUND = "not_found"


class BillingStore(Protocol):
    def get(self, key, key_type: str = KEY_ACCOUNT) -> Optional[BillingState]: ...

    def upsert(self, record: BillingState, expected_version: Optional[int] = None) -> bool: ...

    def query(self, statuses: Optional[Sequence[str]] = None) -> list: ...


@dataclass(frozen=True)
class ReconcileResult:
    outcome: str
    record: Optional[BillingState]
    attempts: int = 1

    @property
    def applied(self) -> bool:
        return self.outcome == OUTCOME_APPLIED


class Reconciler:
    def __init__(
        self,
        store: BillingStore,
        *,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.max_attempts = max_attempts
        self.clock = clock

    def apply(
        self,
        key,
        transition: Transition,
        key_type: str = KEY_ACCOUNT,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        if key_type not in KEY_TYPES:
            raise ValueError(f"unknown key type {key_type!r}")
        now = as_utc(now) if now is not None else self.clock()

        for attempt in range(1, self.max_attempts + 1):
            current = self.store.get(key, key_type)

            if current is None:
                if not isinstance(transition, EnsureExists):
                    logger.info(
                        "billing.reconcile.not_found",
                        extra={"key": key, "key_type": key_type, "transition": str(transition)},
                    )
                    return ReconcileResult(OUTCOME_NOT_FOUND, None, attempt)
                created = transition.materialize(now).evolve(version=1, updated_at=now)
                if self.store.upsert(created, expected_version=None):
                    logger.info(
                        "billing.reconcile.created",
                        extra={"account_id": created.account_id, "status": created.status},
                    )
                    return ReconcileResult(OUTCOME_APPLIED, created, attempt)
                self._log_conflict(key, transition, attempt)
                continue

            if transition.is_stale_for(current):
                logger.info(
                    "billing.reconcile.stale",
                    extra={
                        "account_id": current.account_id,
                        "transition": str(transition),
                        "status": current.status,
                    },
                )
                return ReconcileResult(OUTCOME_STALE, current, attempt)

            proposed = transition.next_state(current, now)
            if proposed is None or proposed.same_as(current):
                return ReconcileResult(OUTCOME_NOOP, current, attempt)

            written = proposed.evolve(version=current.version + 1, updated_at=now)
            if self.store.upsert(written, expected_version=current.version):
                logger.info(
                    "billing.reconcile.applied",
                    extra={
                        "account_id": written.account_id,
                        "transition": str(transition),
                        "from_status": current.status,
                        "to_status": written.status,
                        "version": written.version,
                    },
                )
                return ReconcileResult(OUTCOME_APPLIED, written, attempt)
            self._log_conflict(key, transition, attempt)

        raise ConflictRetryExhausted(key, self.max_attempts)

    def _log_conflict(self, key, transition, attempt):
        logger.warning(
            "billing.reconcile.conflict",
            extra={"key": key, "transition": str(transition), "attempt": attempt},
        )
