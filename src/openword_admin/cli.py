"""Typer CLI for the OpenWord admin jobs."""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="openword-admin", help="OpenWord admin: price migrations and usage jobs")
migrations_app = typer.Typer(help="Manage subscription price migrations")
app.add_typer(migrations_app, name="migrations")
console = Console()


def _run(coro_factory):
    """Run ``coro_factory(db)`` against an initialised database."""
    from openword_admin.common.config import get_settings
    from openword_admin.common.logging import setup_logging
    from openword_admin.deps import get_db

    setup_logging(get_settings().log_level)

    async def runner():
        db = get_db()
        await db.init()
        try:
            return await coro_factory(db)
        finally:
            await db.close()

    return asyncio.run(runner())


def _check(result: dict) -> dict:
    if not result.get("success"):
        console.print(f"[bold red]{result.get('code', 'ERROR')}[/bold red] {result.get('error')}")
        raise typer.Exit(1)
    return result


async def _with_session(db, fn):
    async with db.get_session() as session:
        return await fn(session)


@app.command("init-db")
def init_db():
    """Create all tables in the configured database."""
    async def create(db):
        await db.create_all()

    _run(create)
    console.print("[bold green]Database tables created[/bold green]")


@app.command()
def scheduler(
    startup_check: bool = typer.Option(
        True, help="Check for due migrations shortly after starting",
    ),
):
    """Run the daily scheduler until interrupted."""
    from openword_admin.deps import PRICE_MIGRATION_JOB, get_scheduler

    async def serve(db):
        sched = get_scheduler()
        console.print(
            f"[bold green]Scheduler running[/bold green] "
            f"(jobs: {', '.join(sched.jobs)}; daily at "
            f"{sched.settings.scheduler_hour:02d}:{sched.settings.scheduler_minute:02d} UTC)"
        )
        await sched.run_forever(run_on_startup=[PRICE_MIGRATION_JOB] if startup_check else [])

    try:
        _run(serve)
    except KeyboardInterrupt:
        console.print("Scheduler stopped")


@app.command("run-job")
def run_job(name: str = typer.Argument(..., help="Registered job name")):
    """Run one scheduled job immediately, honouring its lease."""
    from openword_admin.deps import get_scheduler

    async def run(db):
        sched = get_scheduler()
        if name not in sched.jobs:
            return {"success": False, "error": f"Unknown job {name}", "code": "NOT_FOUND"}
        return await sched.run_job(name)

    result = _check(_run(run))
    console.print_json(data=result.get("result"))


@app.command()
def consolidate():
    """Consolidate usage rows of old sessions now."""
    from openword_admin.deps import get_consolidation_service

    svc = get_consolidation_service()
    result = _check(_run(lambda db: _with_session(db, svc.run_consolidation_now)))
    console.print(
        f"[bold green]Consolidated {result['consolidated']} sessions[/bold green]: "
        f"{result['rows_removed']} rows removed, {result['rows_created']} created "
        f"(net {result['net_reduction']}, {result['duration_seconds']}s)"
    )


# ── Migrations ──


@migrations_app.command("list")
def list_migrations():
    """List price migrations, newest first."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    result = _check(_run(lambda db: _with_session(db, svc.list_migrations)))

    table = Table("ID", "Name", "Status", "Customers", "Emails", "Done", "Failed", "Scheduled")
    for mig in result["migrations"]:
        table.add_row(
            mig["id"], mig["name"], mig["status"],
            str(mig["total_customers"]), str(mig["emails_sent_count"]),
            str(mig["migrations_completed"]), str(mig["migrations_failed"]),
            mig["migration_scheduled_for"] or "-",
        )
    console.print(table)


@migrations_app.command("show")
def show_migration(migration_id: str = typer.Argument(..., help="Migration ID")):
    """Show a migration with its enrolled customers."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    result = _check(_run(
        lambda db: _with_session(db, lambda s: svc.get_migration_details(s, migration_id))
    ))
    console.print_json(data=result)


@migrations_app.command("create")
def create_migration(
    name: str = typer.Option(..., help="Campaign name"),
    config: Path = typer.Option(..., exists=True, dir_okay=False, help="JSON file with pricing and price ids"),
    created_by: str = typer.Option("cli", help="Who is creating the migration"),
):
    """Create a pending migration from a JSON configuration file."""
    from openword_admin.deps import get_migration_service

    payload = json.loads(config.read_text())
    payload["name"] = name

    svc = get_migration_service()
    result = _check(_run(
        lambda db: _with_session(db, lambda s: svc.create_migration(s, payload, created_by))
    ))
    mig = result["migration"]
    console.print(f"[bold green]Created[/bold green] {mig['id']} ({mig['total_customers']} customers)")
    if result["missing_price_ids"]:
        console.print(
            f"[yellow]No new price id for:[/yellow] {', '.join(result['missing_price_ids'])}"
        )


@migrations_app.command("customers")
def customers_to_migrate(migration_id: str = typer.Argument(..., help="Migration ID")):
    """Preview the customers a migration would affect."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    result = _check(_run(
        lambda db: _with_session(db, lambda s: svc.get_customers_to_migrate(s, migration_id))
    ))

    table = Table("Organisation", "Tier", "Currency", "Current price", "New price")
    for c in result["customers"]:
        table.add_row(
            c["name"], c["tier"], c["currency"],
            c["current_price_id"] or "-", c["new_price_id"] or "[red]missing[/red]",
        )
    console.print(table)
    console.print(f"{result['valid_for_migration']} of {result['total']} ready to migrate")


@migrations_app.command("selectable")
def selectable_customers():
    """List organisations that can be picked for a migration."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    result = _check(_run(lambda db: _with_session(db, svc.list_selectable_customers)))
    console.print_json(data=result["customers"])


@migrations_app.command("prices")
def tier_prices():
    """List active Stripe prices grouped by tier and currency."""
    from openword_admin.deps import get_migration_service

    async def fetch(db):
        return await get_migration_service().list_tier_prices()

    result = _check(_run(fetch))
    console.print_json(data=result["prices"])


@migrations_app.command("send-emails")
def send_emails(migration_id: str = typer.Argument(..., help="Migration ID")):
    """Send the advance price-change notice to every affected customer."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    result = _check(_run(
        lambda db: _with_session(db, lambda s: svc.send_migration_emails(s, migration_id))
    ))
    console.print(
        f"[bold green]Emails:[/bold green] {result['sent']} sent, "
        f"{result['failed']} failed, {result['skipped']} skipped"
    )
    console.print(f"Scheduled for {result['migration']['migration_scheduled_for']}")
    for err in result["errors"]:
        console.print(f"  [red]{err['customer']}[/red]: {err['error']}")


@migrations_app.command("execute")
def execute(migration_id: str = typer.Argument(..., help="Migration ID")):
    """Apply the new prices now, without waiting for the scheduled date."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    result = _check(_run(
        lambda db: _with_session(db, lambda s: svc.execute_migration(s, migration_id))
    ))
    console.print(
        f"[bold green]Migrated:[/bold green] {result['completed']} completed, "
        f"{result['failed']} failed, {result['skipped']} skipped"
    )
    for err in result["errors"]:
        console.print(f"  [red]{err['customer_id']}[/red]: {err['error']}")


@migrations_app.command("cancel")
def cancel(migration_id: str = typer.Argument(..., help="Migration ID")):
    """Cancel a migration that has not completed."""
    from openword_admin.deps import get_migration_service

    svc = get_migration_service()
    _check(_run(
        lambda db: _with_session(db, lambda s: svc.cancel_migration(s, migration_id))
    ))
    console.print(f"[bold]Cancelled[/bold] {migration_id}")


@migrations_app.command("run-due")
def run_due(
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list due migrations"),
):
    """Execute every migration whose notice period has elapsed."""
    from openword_admin.deps import get_email_sender, get_migration_service
    from openword_admin.price_migration.scheduler import run_price_migration_job

    svc = get_migration_service()

    if dry_run:
        result = _check(_run(lambda db: _with_session(db, svc.get_pending_migrations)))
        if not result["migrations"]:
            console.print("No migrations due")
        for mig in result["migrations"]:
            console.print(f"{mig['id']}  {mig['name']}  due {mig['migration_scheduled_for']}")
        return

    outcomes = _run(lambda db: run_price_migration_job(db, svc, get_email_sender()))
    if not outcomes:
        console.print("No migrations due")
    for outcome in outcomes:
        status = "[green]ok[/green]" if outcome["success"] else "[red]failed[/red]"
        console.print(
            f"{outcome['name']}: {status} "
            f"({outcome['completed']} completed, {outcome['failed']} failed)"
        )


if __name__ == "__main__":
    app()
