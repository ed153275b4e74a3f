# Overview: Flask CLI command groups for flag reconciliation, purchase maintenance and the coin ledger.

# backend/storyhub/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# has_paid_chapters reconciliation:
# - python -m flask paid-chapters recalculate-all
#   Recompute the flag for every story; writes only where it drifted.
# - python -m flask paid-chapters check
#   List stories whose stored flag differs from their chapters (read-only).
# - python -m flask paid-chapters repair 12 15 18
#   Repair the given stories in one batch.
#
# Purchases:
# - python -m flask purchases expire
#   Mark active purchases whose expires_at has passed as expired.
# - python -m flask purchases refund 42 --reason "duplicate charge"
#   Refund purchase entry 42 and credit its coins back.
#
# Coins:
# - python -m flask coins credit 7 500 --memo "welcome bonus"
#   Credit coins to a user (creates the account if needed).

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import EntitlementError
from .services import ledger_service, paid_chapters_service, purchase_service


@click.group('paid-chapters')
def paid_chapters_group():
    """has_paid_chapters reconciliation commands."""


@paid_chapters_group.command('recalculate-all')
@with_appcontext
def recalculate_all_cli():
    """Recompute has_paid_chapters for every story."""
    click.echo("START Recalculating has_paid_chapters for all stories...")
    summary = paid_chapters_service.recalculate_all()

    click.echo(f"PASS Stories scanned: {summary['total_stories']}")
    click.echo(f"PASS Stories updated: {summary['updated_stories']}")
    if summary["errors"]:
        click.echo(f"FAIL {len(summary['errors'])} stories failed:")
        for error in summary["errors"]:
            click.echo(f"  - story {error['story_id']}: {error['error']}")
        raise SystemExit(1)
    click.echo("DONE")


@paid_chapters_group.command('check')
@with_appcontext
def check_cli():
    """List stories whose stored flag drifted from their chapters."""
    drifted = paid_chapters_service.find_inconsistent_stories()
    if not drifted:
        click.echo("PASS All stories consistent")
        return

    click.echo(f"WARN {len(drifted)} inconsistent stories:")
    for row in drifted:
        mode_conflict = " (conflicts with is_paid)" if row["is_paid"] and row["calculated_value"] else ""
        click.echo(
            f"  - {row['story_id']} {row['story_name']}: "
            f"stored={row['current_value']} calculated={row['calculated_value']}{mode_conflict}"
        )
    click.echo("Run `flask paid-chapters recalculate-all` to repair.")


@paid_chapters_group.command('repair')
@click.argument('story_ids', nargs=-1, type=int, required=True)
@with_appcontext
def repair_cli(story_ids):
    """Repair the given stories."""
    results = paid_chapters_service.repair_batch(list(story_ids))
    for result in results:
        if not result.ok:
            click.echo(f"FAIL story {result.story_id}: {result.error}")
        elif result.updated:
            click.echo(f"PASS story {result.story_id}: has_paid_chapters -> {result.value}")
        else:
            click.echo(f"SKIP story {result.story_id}: already {result.value}")


@click.group('purchases')
def purchases_group():
    """Purchase maintenance commands."""


@purchases_group.command('expire')
@with_appcontext
def expire_cli():
    """Expire purchases whose term has run out."""
    count = purchase_service.expire_purchases()
    click.echo(f"PASS Expired {count} purchases")


@purchases_group.command('refund')
@click.argument('entry_id', type=int)
@click.option('--reason', default=None, help='Reason recorded in the ledger memo')
@with_appcontext
def refund_cli(entry_id, reason):
    """Refund a purchase entry."""
    try:
        result = purchase_service.refund_purchase(entry_id, reason=reason)
    except EntitlementError as e:
        click.echo(f"FAIL {e.code}: {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Refunded {result['refunded']} coins; balance now {result['balance_after']}")


@click.group('coins')
def coins_group():
    """Coin ledger commands."""


@coins_group.command('credit')
@click.argument('user_id', type=int)
@click.argument('amount', type=int)
@click.option('--memo', default=None, help='Ledger memo')
@with_appcontext
def credit_cli(user_id, amount, memo):
    """Credit coins to a user."""
    try:
        new_balance = ledger_service.credit(user_id, amount, memo)
        ledger_service.append_transaction(
            user_id=user_id,
            txn_type=ledger_service.TXN_TYPE_CREDIT,
            coin_change=amount,
            balance_after=new_balance,
            memo=memo,
        )
        db.session.commit()
    except EntitlementError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.code}: {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Credited {amount} coins to user {user_id}; balance now {new_balance}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(paid_chapters_group)
    app.cli.add_command(purchases_group)
    app.cli.add_command(coins_group)
