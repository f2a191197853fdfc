import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta, timezone

import pytest
from schedmate import create_app
from schedmate.extensions import db
from schedmate.models import Account, BillingRecord
from schedmate.billing.constants import KEY_SUBSCRIPTION
from schedmate.billing.errors import TransientStoreFailure


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        PAYPAL_CLIENT_ID="client_test",
        PAYPAL_SECRET="secret_test",
        PAYPAL_WEBHOOK_ID="WH-TEST",
        PAYPAL_API_BASE="https://paypal.test",
        BILLING_TRIAL_DAYS=7,
        BILLING_GRACE_DAYS=3,
        BILLING_CAS_MAX_ATTEMPTS=5,
        BILLING_POLL_INTERVAL_SECONDS=30,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def make_account(app, email="owner@example.com", billing=True, **fields) -> int:
    """Seed an account and (optionally) its billing row; returns the account id."""
    with app.app_context():
        account = Account(email=email)
        account.set_password("x")
        db.session.add(account)
        db.session.commit()
        if billing:
            values = {
                "status": "trial",
                "plan": "starter",
                "trial_ends_at": now_utc() + timedelta(days=7),
            }
            values.update(fields)
            db.session.add(BillingRecord(account_id=account.id, **values))
            db.session.commit()
        return account.id


def load_record(app, account_id):
    with app.app_context():
        row = db.session.query(BillingRecord).filter_by(account_id=account_id).one_or_none()
        return row.to_state() if row is not None else None


def login(client, account_id: int):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(account_id)


class FakeStore:
    """In-memory store with the same compare-and-set contract as SqlBillingStore."""

    def __init__(self, *records):
        self.rows = {r.account_id: r for r in records}
        self.writes = 0
        # called once before each upsert; lets a test play the concurrent writer
        self.before_write = None
        self.fail_reads = False

    def get(self, key, key_type="account_id"):
        if self.fail_reads:
            raise TransientStoreFailure("store down")
        if key_type == KEY_SUBSCRIPTION:
            return next((r for r in self.rows.values() if r.subscription_id == key), None)
        return self.rows.get(key)

    def upsert(self, record, expected_version=None):
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook(self)
        current = self.rows.get(record.account_id)
        if expected_version is None:
            if current is not None:
                return False
        elif current is None or current.version != expected_version:
            return False
        self.rows[record.account_id] = record
        self.writes += 1
        return True

    def query(self, statuses=None):
        return [r for r in self.rows.values() if not statuses or r.status in statuses]

    def put(self, record):
        self.rows[record.account_id] = record


