from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from schedmate.models.billing_record import BillingRecord

from .constants import KEY_ACCOUNT, KEY_SUBSCRIPTION
from .errors import InvalidTransition, TransientStoreFailure
from .state import BillingState

_KEY_COLUMNS = {
    KEY_ACCOUNT: BillingRecord.account_id,
    KEY_SUBSCRIPTION: BillingRecord.subscription_id,
}


class SqlBillingStore:
    """
    Billing Record Store over SQLAlchemy.

    - get(key, key_type) -> BillingState | None
    - upsert(state, expected_version) -> True on write, False on a lost race
    - query(statuses) -> [BillingState]
    Database errors surface as TransientStoreFailure after a rollback.
    """

    def __init__(self, session):
        self.session = session

    def get(self, key, key_type: str = KEY_ACCOUNT) -> Optional[BillingState]:
        column = _KEY_COLUMNS[key_type]
        stmt = select(BillingRecord).where(column == key).execution_options(populate_existing=True)
        try:
            row = self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransientStoreFailure(f"billing read failed for {key_type}={key!r}") from exc
        return row.to_state() if row is not None else None

    def upsert(self, state: BillingState, expected_version: Optional[int] = None) -> bool:
        if expected_version is None:
            return self._insert(state)
        return self._update(state, expected_version)

    def query(self, statuses: Optional[Sequence[str]] = None) -> list:
        stmt = select(BillingRecord).order_by(BillingRecord.id)
        if statuses:
            stmt = stmt.where(BillingRecord.status.in_(list(statuses)))
        try:
            rows = self.session.execute(stmt.execution_options(populate_existing=True)).scalars().all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransientStoreFailure("billing query failed") from exc
        return [r.to_state() for r in rows]

    # -- writes --

    def _insert(self, state: BillingState) -> bool:
        self.session.add(BillingRecord.from_state(state))
        try:
            self.session.commit()
        except IntegrityError:
            # someone else materialised the row first
            self.session.rollback()
            return False
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransientStoreFailure(f"billing insert failed for account_id={state.account_id}") from exc
        return True

    def _update(self, state: BillingState, expected_version: int) -> bool:
        stmt = (
            update(BillingRecord)
            .where(
                BillingRecord.account_id == state.account_id,
                BillingRecord.version == expected_version,
            )
            .values(**BillingRecord.columns_from_state(state))
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise InvalidTransition(f"billing update violates a constraint for account_id={state.account_id}") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransientStoreFailure(f"billing update failed for account_id={state.account_id}") from exc
        return result.rowcount == 1
