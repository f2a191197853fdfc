import json
import click
from flask.cli import with_appcontext
from schedmate.extensions import db
from schedmate.models import Account
from schedmate.billing.context import BillingContext
from schedmate.billing.constants import KEY_ACCOUNT, KEY_SUBSCRIPTION, PLAN_OWNER
from schedmate.billing.errors import BillingError
from schedmate.billing.sweep import run_sweep
from schedmate.billing.transitions import Activate, HardExpire
from schedmate.services import billing as billing_service


@click.group()
def accounts():
    """Account management."""


@accounts.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--business-name", default=None)
@with_appcontext
def accounts_create(email, password, business_name):
    # fail fast if account exists
    if db.session.query(Account).filter_by(email=email.strip().lower()).count():
        raise click.ClickException("Account already exists")

    account = billing_service.create_account(email=email, password=password, business_name=business_name)
    record = billing_service.get_reconciler().store.get(account.id, KEY_ACCOUNT)
    click.echo(
        f"Account created id={account.id} email={account.email} "
        f"status={record.status} trial_ends_at={record.trial_ends_at.isoformat()}"
    )


@click.group()
def billing():
    """Billing state ops (all writes go through the Reconciler)."""


@billing.command("sweep")
@with_appcontext
def billing_sweep():
    """Expire lapsed trials. Meant for cron / a scheduler."""
    try:
        report = run_sweep(billing_service.get_reconciler())
    except BillingError as exc:
        # non-zero exit so the scheduler retries next tick
        raise click.ClickException(f"Sweep failed: {exc}")
    click.echo(json.dumps(report.to_dict()))
    if report.failed:
        raise click.ClickException(f"{len(report.failed)} record(s) lost their write race; retry next tick")


@billing.command("show")
@click.option("--account-id", type=int, required=True)
@with_appcontext
def billing_show(account_id):
    record = billing_service.get_reconciler().store.get(account_id, KEY_ACCOUNT)
    if record is None:
        raise click.ClickException(f"No billing record for account {account_id}")
    ctx = BillingContext(record)
    click.echo(json.dumps(ctx.to_dict(), indent=2))


@billing.command("grant-owner")
@click.option("--account-id", type=int, required=True)
@with_appcontext
def billing_grant_owner(account_id):
    if not db.session.get(Account, account_id):
        raise click.ClickException(f"Account id {account_id} not found")
    result = billing_service.get_reconciler().apply(account_id, Activate(PLAN_OWNER))
    if result.record is None:
        raise click.ClickException(f"No billing record for account {account_id}")
    click.echo(f"account {account_id}: plan={result.record.plan} status={result.record.status} ({result.outcome})")


@billing.command("expire")
@click.option("--subscription-id", required=True)
@with_appcontext
def billing_expire(subscription_id):
    """Manual HardExpire, e.g. after a provider-side refund."""
    result = billing_service.get_reconciler().apply(subscription_id, HardExpire(), key_type=KEY_SUBSCRIPTION)
    if result.record is None:
        raise click.ClickException(f"No billing record for subscription {subscription_id}")
    click.echo(f"subscription {subscription_id}: status={result.record.status} ({result.outcome})")


def register_cli(app):
    app.cli.add_command(accounts)
    app.cli.add_command(billing)
