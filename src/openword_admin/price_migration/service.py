"""Price migration service: create campaigns, notify customers, apply new prices."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import pydantic
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openword_admin.common.config import AdminSettings
from openword_admin.common.exceptions import (
    AdminError,
    MigrationNotFoundError,
    MigrationStateError,
    SubscriptionProviderError,
    ValidationError,
)
from openword_admin.common.models import utcnow
from openword_admin.notifications.email_delivery import EmailResult
from openword_admin.organisations.models import OrganisationModel
from openword_admin.organisations.service import OrganisationService
from openword_admin.price_migration import models as m
from openword_admin.price_migration.models import (
    PriceMigrationCustomerModel,
    PriceMigrationModel,
)
from openword_admin.price_migration.notice import (
    effective_date_label,
    format_price,
    notice_subject,
    render_price_change_notice,
)
from openword_admin.price_migration.schemas import (
    MigrationCandidate,
    MigrationCreate,
    MigrationCustomerRead,
    MigrationRead,
)

logger = logging.getLogger(__name__)


def _validation_message(exc: pydantic.ValidationError) -> str:
    first = exc.errors()[0]
    message = first.get("msg", "Invalid migration configuration")
    return message.removeprefix("Value error, ")


def _failure(exc: Exception) -> dict:
    if isinstance(exc, AdminError):
        return exc.as_result()
    return {"success": False, "error": str(exc), "code": "DATABASE_ERROR"}


def _migration_dict(migration: PriceMigrationModel) -> dict:
    return MigrationRead.model_validate(migration).model_dump(mode="json")


class PriceMigrationService:
    """Bulk subscription price changes.

    A campaign moves pending -> emails_sent -> completed, or to cancelled
    from either of the first two. Each enrolled organisation carries its
    own email and migration outcome, so one customer's failure never
    blocks the rest of the batch.
    """

    def __init__(
        self,
        settings: AdminSettings,
        subscription_provider,
        email_sender,
        organisations: Optional[OrganisationService] = None,
    ):
        self.settings = settings
        self.provider = subscription_provider
        self.email_sender = email_sender
        self.organisations = organisations or OrganisationService()

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def _get_migration(
        self, session: AsyncSession, migration_id: str, refresh: bool = False,
    ) -> PriceMigrationModel:
        migration = await session.get(
            PriceMigrationModel, migration_id, populate_existing=refresh,
        )
        if migration is None:
            raise MigrationNotFoundError()
        return migration

    # ── Create ──

    def _check_price_matrix(self, price_ids: dict[str, dict[str, str]]) -> list[str]:
        """Reject unknown tiers/currencies; return the combinations left unset."""
        tiers = self.settings.migration_tiers
        currencies = self.settings.migration_currencies
        for tier, by_currency in price_ids.items():
            if tier not in tiers:
                raise ValidationError(f"Unknown tier '{tier}' in new price ids")
            for currency in by_currency:
                if currency not in currencies:
                    raise ValidationError(f"Unknown currency '{currency}' for tier '{tier}'")
        return [
            f"{tier}_{currency}"
            for tier in tiers
            for currency in currencies
            if not price_ids.get(tier, {}).get(currency)
        ]

    async def create_migration(
        self,
        session: AsyncSession,
        config: dict[str, Any] | MigrationCreate,
        created_by: str,
    ) -> dict:
        try:
            if not isinstance(config, MigrationCreate):
                try:
                    config = MigrationCreate.model_validate(config)
                except pydantic.ValidationError as e:
                    raise ValidationError(_validation_message(e)) from e

            missing = self._check_price_matrix(config.new_price_ids)

            total = await self.organisations.count_migratable(
                session, self.settings.migration_tiers, config.selected_organisation_ids,
            )

            migration = PriceMigrationModel(
                name=config.name,
                status=m.PENDING,
                old_basic_gbp=config.old_pricing.basic_gbp,
                old_standard_gbp=config.old_pricing.standard_gbp,
                old_pro_gbp=config.old_pricing.pro_gbp,
                old_credit_gbp=config.old_pricing.credit_gbp,
                new_basic_gbp=config.new_pricing.basic_gbp,
                new_standard_gbp=config.new_pricing.standard_gbp,
                new_pro_gbp=config.new_pricing.pro_gbp,
                new_credit_gbp=config.new_pricing.credit_gbp,
                new_price_ids=config.new_price_ids,
                selected_organisation_ids=config.selected_organisation_ids,
                total_customers=total,
                created_by=created_by,
            )
            session.add(migration)
            await session.flush()
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error creating price migration: %s", e)
            return _failure(e)

        if missing:
            logger.warning(
                "Price migration %s has no new price id for: %s",
                migration.id, ", ".join(missing),
            )
        logger.info(
            "Price migration created: %s (%s), affects %d customers",
            migration.name, migration.id, total,
        )
        return {
            "success": True,
            "migration": _migration_dict(migration),
            "missing_price_ids": missing,
        }

    # ── Candidates ──

    async def _resolve_candidates(
        self, session: AsyncSession, migration: PriceMigrationModel,
    ) -> list[MigrationCandidate]:
        orgs = await self.organisations.list_migratable(
            session, self.settings.migration_tiers, migration.selected_organisation_ids,
        )

        candidates = []
        for org in orgs:
            currency = (org.preferred_currency or "gbp").lower()
            current_price_id = None
            item_id = None

            try:
                subscription = await self.provider.retrieve_subscription(
                    org.stripe_subscription_id
                )
            except SubscriptionProviderError as e:
                logger.error(
                    "Failed to get subscription for %s: %s", org.name, e.message,
                    extra={"migration_id": migration.id, "organisation_id": org.id},
                )
            else:
                items = subscription.get("items") or []
                if items:
                    item = items[0]
                    item_id = item.get("id")
                    price = item.get("price") or {}
                    current_price_id = price.get("id")
                    currency = (price.get("currency") or currency).lower()

            candidates.append(MigrationCandidate(
                organisation_id=org.id,
                name=org.name,
                email=org.billing_email or None,
                tier=org.subscription_tier,
                currency=currency,
                stripe_customer_id=org.stripe_customer_id,
                stripe_subscription_id=org.stripe_subscription_id,
                subscription_item_id=item_id,
                current_price_id=current_price_id,
                new_price_id=migration.price_id_for(org.subscription_tier, currency),
            ))
        return candidates

    async def get_customers_to_migrate(
        self, session: AsyncSession, migration_id: str,
    ) -> dict:
        try:
            migration = await self._get_migration(session, migration_id)
            candidates = await self._resolve_candidates(session, migration)
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error getting customers to migrate: %s", e)
            return _failure(e)

        customers = [c.as_dict() for c in candidates]
        return {
            "success": True,
            "customers": customers,
            "total": len(customers),
            "valid_for_migration": sum(1 for c in candidates if c.has_valid_new_price),
        }

    # ── Emails ──

    async def _update_customer(
        self, session: AsyncSession, customer_row_id: str, **values: Any,
    ) -> None:
        await session.execute(
            update(PriceMigrationCustomerModel)
            .where(PriceMigrationCustomerModel.id == customer_row_id)
            .values(**values)
        )
        await session.commit()

    async def _record_email_outcome(
        self,
        session: AsyncSession,
        migration_id: str,
        candidate: MigrationCandidate,
        row_id: str,
        result: EmailResult,
    ) -> bool:
        """Store a delivery outcome, retrying once.

        A notice that went out but is still ``unsent`` in the ledger would be
        sent again by a re-run, so a second failure is logged for the operator
        to reconcile.
        """
        values = {
            "email_sent_at": utcnow(),
            "email_status": m.EMAIL_SENT if result.success else m.EMAIL_FAILED,
            "email_error": result.error,
        }
        context = {"migration_id": migration_id, "organisation_id": candidate.organisation_id}
        for attempt in (1, 2):
            try:
                await self._update_customer(session, row_id, **values)
                return True
            except SQLAlchemyError as e:
                await session.rollback()
                if attempt == 1:
                    logger.warning(
                        "Retrying email status for %s: %s", candidate.name, e, extra=context,
                    )
                    continue
                logger.error(
                    "Email status %s for %s not recorded: %s; reconcile before re-running",
                    values["email_status"], candidate.name, e, extra=context,
                )
        return False

    async def _enroll(
        self,
        session: AsyncSession,
        migration_id: str,
        candidate: MigrationCandidate,
    ) -> tuple[str, str]:
        """Insert the customer row, or find the one a previous run created.

        Returns (row id, email status).
        """
        query = select(
            PriceMigrationCustomerModel.id, PriceMigrationCustomerModel.email_status,
        ).where(
            PriceMigrationCustomerModel.migration_id == migration_id,
            PriceMigrationCustomerModel.organisation_id == candidate.organisation_id,
        )
        existing = (await session.execute(query)).first()
        if existing is not None:
            return existing[0], existing[1]

        row = PriceMigrationCustomerModel(
            migration_id=migration_id,
            organisation_id=candidate.organisation_id,
            current_tier=candidate.tier,
            current_currency=candidate.currency,
            current_price_id=candidate.current_price_id,
            stripe_subscription_id=candidate.stripe_subscription_id,
            stripe_subscription_item_id=candidate.subscription_item_id,
            new_price_id=candidate.new_price_id,
            email_status=m.EMAIL_UNSENT,
            migration_status=m.PENDING,
        )
        session.add(row)
        try:
            await session.commit()
        except IntegrityError:
            # Enrolled concurrently; keep the row that won.
            await session.rollback()
            winner = (await session.execute(query)).one()
            return winner[0], winner[1]
        return row.id, m.EMAIL_UNSENT

    async def send_migration_emails(
        self, session: AsyncSession, migration_id: str,
    ) -> dict:
        """Enroll every eligible organisation and send the advance notice.

        Safe to re-run while the campaign is still pending: customers whose
        email outcome is already recorded are not emailed again.
        """
        try:
            migration = await self._get_migration(session, migration_id)
            if migration.status != m.PENDING:
                raise MigrationStateError(f"Migration is already {migration.status}")
            candidates = await self._resolve_candidates(session, migration)
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error sending migration emails: %s", e)
            return _failure(e)

        sent_at = utcnow()
        effective = sent_at + timedelta(days=self.settings.migration_notice_days)
        label = effective_date_label(effective)
        subject = notice_subject(label)
        pricing = {
            tier: migration.tier_pricing(tier) for tier in self.settings.migration_tiers
        }
        fallback_pricing = migration.tier_pricing("basic")
        old_credit, new_credit = migration.old_credit_gbp, migration.new_credit_gbp

        sent = failed = skipped = 0
        errors: list[dict] = []

        for candidate in candidates:
            try:
                row_id, email_status = await self._enroll(session, migration_id, candidate)
                if email_status != m.EMAIL_UNSENT:
                    continue

                if not candidate.email:
                    await self._update_customer(
                        session, row_id,
                        email_status=m.EMAIL_SKIPPED,
                        email_error="No email address",
                    )
                    skipped += 1
                    continue

                old_price, new_price = pricing.get(candidate.tier, fallback_pricing)
                body = render_price_change_notice(
                    org_name=candidate.name,
                    tier=candidate.tier,
                    effective_label=label,
                    current_price=format_price(old_price, candidate.currency),
                    new_price=format_price(new_price, candidate.currency),
                    current_credit=format_price(old_credit, candidate.currency),
                    new_credit=format_price(new_credit, candidate.currency),
                )
                result = await self.email_sender.send_email(
                    candidate.email, subject, body, candidate.name,
                )
                recorded = await self._record_email_outcome(
                    session, migration_id, candidate, row_id, result,
                )

                if result.success:
                    sent += 1
                    if not recorded:
                        errors.append({
                            "customer": candidate.name,
                            "error": "Notice sent but its status was not recorded",
                        })
                else:
                    failed += 1
                    errors.append({"customer": candidate.name, "error": result.error})

                await self._pause(self.settings.email_send_delay)
            except SQLAlchemyError as e:
                await session.rollback()
                failed += 1
                errors.append({"customer": candidate.name, "error": str(e)})
                logger.error(
                    "Error processing customer %s: %s", candidate.name, e,
                    extra={"migration_id": migration_id, "organisation_id": candidate.organisation_id},
                )

        try:
            migration = await self._get_migration(session, migration_id, refresh=True)
            sent_total = await session.scalar(
                select(func.count(PriceMigrationCustomerModel.id)).where(
                    PriceMigrationCustomerModel.migration_id == migration_id,
                    PriceMigrationCustomerModel.email_status == m.EMAIL_SENT,
                )
            )
            migration.status = m.EMAILS_SENT
            migration.emails_sent_at = sent_at
            migration.migration_scheduled_for = effective
            migration.emails_sent_count = sent_total or 0
            migration.total_customers = len(candidates)
            await session.commit()
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error recording migration email results: %s", e)
            return _failure(e)

        logger.info(
            "Price migration emails sent: %d sent, %d failed, %d skipped",
            sent, failed, skipped,
            extra={"migration_id": migration_id},
        )
        return {
            "success": True,
            "sent": sent,
            "failed": failed,
            "skipped": skipped,
            "errors": errors,
            "migration": _migration_dict(migration),
        }

    # ── Execute ──

    async def _apply_new_price(
        self, subscription_id: str, item_id: Optional[str], new_price_id: str,
    ) -> str:
        """Point the subscription item at the new price; returns the item id."""
        if not item_id:
            subscription = await self.provider.retrieve_subscription(subscription_id)
            items = subscription.get("items") or []
            item_id = items[0].get("id") if items else None
        if not item_id:
            raise SubscriptionProviderError("Could not find subscription item ID")

        await self.provider.update_subscription_item_price(
            subscription_id, item_id, new_price_id, proration="none",
        )
        return item_id

    async def execute_migration(
        self, session: AsyncSession, migration_id: str,
    ) -> dict:
        """Apply the new price to every customer still pending.

        Only pending rows are touched, so a run interrupted part way through
        resumes without updating any subscription twice.
        """
        try:
            migration = await self._get_migration(session, migration_id)
            if migration.status == m.COMPLETED:
                raise MigrationStateError("Migration already completed")
            if migration.status == m.CANCELLED:
                raise MigrationStateError("Migration was cancelled")

            result = await session.execute(
                select(
                    PriceMigrationCustomerModel.id,
                    PriceMigrationCustomerModel.organisation_id,
                    PriceMigrationCustomerModel.stripe_subscription_id,
                    PriceMigrationCustomerModel.stripe_subscription_item_id,
                    PriceMigrationCustomerModel.new_price_id,
                )
                .where(
                    PriceMigrationCustomerModel.migration_id == migration_id,
                    PriceMigrationCustomerModel.migration_status == m.PENDING,
                )
                .order_by(PriceMigrationCustomerModel.created_at)
            )
            pending = result.all()
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error executing price migration: %s", e)
            return {**_failure(e), "completed": 0, "failed": 0, "errors": []}

        completed = failed = skipped = 0
        errors: list[dict] = []

        for row_id, organisation_id, subscription_id, item_id, new_price_id in pending:
            if not subscription_id or not new_price_id:
                reason = "No subscription ID" if not subscription_id else "No new price ID configured"
                try:
                    await self._update_customer(
                        session, row_id,
                        migration_status=m.CUSTOMER_SKIPPED,
                        migration_error=reason,
                    )
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error("Error recording skip for %s: %s", organisation_id, e)
                skipped += 1
                continue

            try:
                item_id = await self._apply_new_price(subscription_id, item_id, new_price_id)
            except SubscriptionProviderError as e:
                failed += 1
                errors.append({"customer_id": organisation_id, "error": e.message})
                logger.error(
                    "Failed to migrate subscription for %s: %s", organisation_id, e.message,
                    extra={"migration_id": migration_id, "organisation_id": organisation_id},
                )
                outcome = {"migration_status": m.CUSTOMER_FAILED, "migration_error": e.message}
            else:
                completed += 1
                logger.info("Migrated subscription for customer %s", organisation_id)
                outcome = {
                    "migration_status": m.COMPLETED,
                    "migration_completed_at": utcnow(),
                    "stripe_subscription_item_id": item_id,
                }

            try:
                await self._update_customer(session, row_id, **outcome)
            except SQLAlchemyError as e:
                await session.rollback()
                errors.append({"customer_id": organisation_id, "error": str(e)})
                logger.error("Error recording migration for %s: %s", organisation_id, e)

            await self._pause(self.settings.provider_call_delay)

        try:
            migration = await self._get_migration(session, migration_id, refresh=True)
            totals = dict((await session.execute(
                select(
                    PriceMigrationCustomerModel.migration_status,
                    func.count(PriceMigrationCustomerModel.id),
                )
                .where(PriceMigrationCustomerModel.migration_id == migration_id)
                .group_by(PriceMigrationCustomerModel.migration_status)
            )).all())
            migration.status = m.COMPLETED
            migration.migration_completed_at = utcnow()
            migration.migrations_completed = totals.get(m.COMPLETED, 0)
            migration.migrations_failed = totals.get(m.CUSTOMER_FAILED, 0)
            await session.commit()
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error recording migration results: %s", e)
            return {**_failure(e), "completed": completed, "failed": failed, "errors": errors}

        logger.info(
            "Price migration completed: %d completed, %d failed, %d skipped",
            completed, failed, skipped,
            extra={"migration_id": migration_id},
        )
        return {
            "success": True,
            "completed": completed,
            "failed": failed,
            "skipped": skipped,
            "errors": errors,
            "migration": _migration_dict(migration),
        }

    # ── Cancel / queries ──

    async def cancel_migration(self, session: AsyncSession, migration_id: str) -> dict:
        try:
            migration = await self._get_migration(session, migration_id)
            if migration.status == m.COMPLETED:
                raise MigrationStateError("Cannot cancel completed migration")
            migration.status = m.CANCELLED
            await session.flush()
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error cancelling migration: %s", e)
            return _failure(e)

        logger.info("Price migration cancelled: %s", migration_id)
        return {"success": True, "migration": _migration_dict(migration)}

    async def get_migration_details(self, session: AsyncSession, migration_id: str) -> dict:
        try:
            migration = await self._get_migration(session, migration_id)
            result = await session.execute(
                select(PriceMigrationCustomerModel, OrganisationModel.name)
                .outerjoin(
                    OrganisationModel,
                    OrganisationModel.id == PriceMigrationCustomerModel.organisation_id,
                )
                .where(PriceMigrationCustomerModel.migration_id == migration_id)
                .order_by(OrganisationModel.name)
            )
            customers = []
            for row, org_name in result.all():
                data = MigrationCustomerRead.model_validate(row).model_dump(mode="json")
                data["organisation_name"] = org_name
                customers.append(data)
        except (AdminError, SQLAlchemyError) as e:
            logger.error("Error getting migration details: %s", e)
            return _failure(e)

        return {"success": True, "migration": _migration_dict(migration), "customers": customers}

    async def list_migrations(self, session: AsyncSession) -> dict:
        try:
            result = await session.execute(
                select(PriceMigrationModel).order_by(PriceMigrationModel.created_at.desc())
            )
            migrations = [_migration_dict(mig) for mig in result.scalars()]
        except SQLAlchemyError as e:
            logger.error("Error listing migrations: %s", e)
            return _failure(e)
        return {"success": True, "migrations": migrations}

    async def get_pending_migrations(
        self, session: AsyncSession, now: Optional[datetime] = None,
    ) -> dict:
        """Campaigns whose notice period has elapsed and are ready to execute."""
        now = now or utcnow()
        try:
            result = await session.execute(
                select(PriceMigrationModel)
                .where(
                    PriceMigrationModel.status == m.EMAILS_SENT,
                    PriceMigrationModel.migration_scheduled_for <= now,
                )
                .order_by(PriceMigrationModel.migration_scheduled_for)
            )
            migrations = [_migration_dict(mig) for mig in result.scalars()]
        except SQLAlchemyError as e:
            logger.error("Error getting pending migrations: %s", e)
            return _failure(e)
        return {"success": True, "migrations": migrations}

    async def list_selectable_customers(self, session: AsyncSession) -> dict:
        try:
            customers = await self.organisations.list_selectable(
                session, self.settings.migration_tiers,
            )
        except SQLAlchemyError as e:
            logger.error("Error fetching customers list: %s", e)
            return _failure(e)
        return {"success": True, "customers": customers, "total": len(customers)}

    async def list_tier_prices(self) -> dict:
        try:
            prices = await self.provider.list_tier_prices(self.settings.migration_tiers)
        except SubscriptionProviderError as e:
            logger.error("Error fetching Stripe prices: %s", e.message)
            return e.as_result()
        return {"success": True, "prices": prices}
