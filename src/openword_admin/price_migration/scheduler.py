"""Daily execution of price migrations whose notice period has elapsed."""

import html
import logging

from sqlalchemy.exc import SQLAlchemyError

from openword_admin.common.database import DatabaseManager

logger = logging.getLogger(__name__)


def _completed_alert(name: str, result: dict) -> tuple[str, str, str]:
    message = (
        f"<p>The price migration \"<strong>{name}</strong>\" has been completed.</p>"
        "<p>Results:</p>"
        "<ul>"
        f"<li>Subscriptions updated: {result['completed']}</li>"
        f"<li>Failed: {result['failed']}</li>"
        "</ul>"
    )
    if result["failed"] > 0:
        message += "<p style=\"color: #dc2626;\">Please review failed migrations in the dashboard.</p>"
    priority = "warning" if result["failed"] > 0 else "info"
    return "Price Migration Completed", message, priority


async def process_pending_migrations(db: DatabaseManager, service, email_sender) -> list[dict]:
    """Execute every due migration and alert operators about each outcome."""
    async with db.get_session() as session:
        pending = await service.get_pending_migrations(session)

    if not pending["success"]:
        logger.error("Failed to get pending migrations: %s", pending["error"])
        return []

    migrations = pending["migrations"]
    if not migrations:
        logger.info("No pending migrations ready for execution")
        return []

    logger.info("Found %d migration(s) ready for execution", len(migrations))

    outcomes = []
    for migration in migrations:
        name = html.escape(migration["name"])
        logger.info("Executing price migration: %s", migration["name"])

        async with db.get_session() as session:
            result = await service.execute_migration(session, migration["id"])

        if result["success"]:
            logger.info(
                "Migration completed: %d subscriptions updated, %d failed",
                result["completed"], result["failed"],
            )
            subject, message, priority = _completed_alert(name, result)
        else:
            logger.error("Migration %s failed: %s", migration["name"], result["error"])
            subject = "Price Migration Failed"
            message = (
                f"<p>The price migration \"<strong>{name}</strong>\" failed to execute.</p>"
                f"<p>Error: {html.escape(result['error'])}</p>"
                "<p>Please check the dashboard for details.</p>"
            )
            priority = "critical"

        await email_sender.send_alert(subject, message, priority)
        outcomes.append({"migration_id": migration["id"], "name": migration["name"], **result})

    return outcomes


async def run_price_migration_job(db: DatabaseManager, service, email_sender) -> list[dict]:
    """Scheduler entry point; database failures are reported to operators, then re-raised."""
    try:
        return await process_pending_migrations(db, service, email_sender)
    except SQLAlchemyError as e:
        logger.exception("Error in price migration scheduler")
        await email_sender.send_alert(
            "Price Migration Error",
            f"<p>An error occurred in the price migration scheduler:</p>"
            f"<p>{html.escape(str(e))}</p>",
            "critical",
        )
        raise
