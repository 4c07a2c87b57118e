"""Usage consolidation: compact old per-chunk usage rows into per-language totals."""

import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openword_admin.common.config import AdminSettings
from openword_admin.common.models import ensure_utc, utcnow
from openword_admin.usage.models import StreamingSessionModel, TranslationUsageModel

logger = logging.getLogger(__name__)

FINISHED_SESSION_STATUSES = ("completed", "recovered")
UNKNOWN_LANGUAGE = "unknown"


def aggregate_by_language(rows: list[Any], fallback_date: Optional[date] = None) -> dict[str, dict]:
    """Group usage rows by language.

    Characters are summed, the client count keeps its peak, and each group
    keeps its earliest timestamp and first recorded date.
    """
    groups: dict[str, dict] = {}
    for row in rows:
        lang = row.language or UNKNOWN_LANGUAGE
        group = groups.setdefault(lang, {
            "character_count": 0,
            "client_count": 0,
            "row_count": 0,
            "usage_date": None,
            "created_at": None,
        })
        group["character_count"] += row.character_count or 0
        group["client_count"] = max(group["client_count"], row.client_count or 0)
        group["row_count"] += 1
        if group["usage_date"] is None and row.usage_date is not None:
            group["usage_date"] = row.usage_date
        created_at = ensure_utc(row.created_at)
        if created_at is not None and (group["created_at"] is None or created_at < group["created_at"]):
            group["created_at"] = created_at

    for group in groups.values():
        if group["usage_date"] is None:
            group["usage_date"] = fallback_date
    return groups


class UsageConsolidationService:
    """Rewrites old sessions' usage rows into one summary row per language.

    The rewrite is sum-preserving: a session's total character count is
    identical before and after. Each session is replaced in its own
    transaction, so a failed insert never leaves the originals deleted.
    """

    def __init__(self, settings: AdminSettings):
        self.settings = settings

    async def _candidate_sessions(self, session: AsyncSession, cutoff: datetime) -> list:
        busy_sessions = (
            select(TranslationUsageModel.session_id)
            .where(TranslationUsageModel.is_consolidated.is_(False))
            .group_by(TranslationUsageModel.session_id)
            .having(func.count(TranslationUsageModel.id) > self.settings.consolidation_min_rows)
        )
        result = await session.execute(
            select(
                StreamingSessionModel.id,
                StreamingSessionModel.organisation_id,
                StreamingSessionModel.started_at,
                StreamingSessionModel.characters_per_language,
            )
            .where(
                StreamingSessionModel.status.in_(FINISHED_SESSION_STATUSES),
                StreamingSessionModel.started_at < cutoff,
                StreamingSessionModel.id.in_(busy_sessions),
            )
            .order_by(StreamingSessionModel.started_at)
            .limit(self.settings.consolidation_batch_size)
        )
        return result.all()

    async def _unconsolidated_rows(self, session: AsyncSession, session_id: str) -> list:
        result = await session.execute(
            select(
                TranslationUsageModel.id,
                TranslationUsageModel.language,
                TranslationUsageModel.character_count,
                TranslationUsageModel.client_count,
                TranslationUsageModel.usage_date,
                TranslationUsageModel.created_at,
            )
            .where(
                TranslationUsageModel.session_id == session_id,
                TranslationUsageModel.is_consolidated.is_(False),
            )
            .order_by(TranslationUsageModel.created_at)
        )
        return result.all()

    async def _replace_rows(
        self,
        session: AsyncSession,
        streaming_session: Any,
        row_ids: list[str],
        groups: dict[str, dict],
    ) -> None:
        """Swap the granular rows for the summaries in a single transaction."""
        started_at = ensure_utc(streaming_session.started_at)
        await session.execute(
            delete(TranslationUsageModel).where(TranslationUsageModel.id.in_(row_ids))
        )
        session.add_all([
            TranslationUsageModel(
                organisation_id=streaming_session.organisation_id,
                session_id=streaming_session.id,
                language=lang,
                character_count=group["character_count"],
                client_count=group["client_count"],
                usage_date=group["usage_date"],
                created_at=group["created_at"] or started_at,
                is_consolidated=True,
            )
            for lang, group in groups.items()
        ])
        if not streaming_session.characters_per_language:
            ss = await session.get(StreamingSessionModel, streaming_session.id)
            if ss is not None:
                ss.characters_per_language = {
                    lang: group["character_count"] for lang, group in groups.items()
                }
        await session.commit()

    async def consolidate_old_sessions(
        self, session: AsyncSession, now: Optional[datetime] = None,
    ) -> dict:
        """Consolidate one batch of sessions older than the retention window.

        Sessions with few unconsolidated rows are left alone, which also
        makes re-running over already consolidated sessions a no-op.
        Returns counts of sessions consolidated and rows removed/created.
        """
        started = time.monotonic()
        cutoff = (now or utcnow()) - timedelta(days=self.settings.consolidation_age_days)
        logger.info(
            "Usage consolidation starting (cutoff %s, batch %d)",
            cutoff.isoformat(), self.settings.consolidation_batch_size,
        )

        candidates = await self._candidate_sessions(session, cutoff)

        consolidated = skipped = failed = 0
        rows_removed = rows_created = 0

        for streaming_session in candidates:
            session_id = streaming_session.id
            try:
                rows = await self._unconsolidated_rows(session, session_id)
                if len(rows) <= self.settings.consolidation_min_rows:
                    skipped += 1
                    continue

                started_at = ensure_utc(streaming_session.started_at)
                groups = aggregate_by_language(
                    rows, fallback_date=started_at.date() if started_at else None,
                )
                await self._replace_rows(
                    session, streaming_session, [row.id for row in rows], groups,
                )
            except SQLAlchemyError:
                await session.rollback()
                failed += 1
                logger.exception(
                    "Error consolidating session %s; rows left intact", session_id,
                    extra={"session_id": session_id},
                )
                continue

            consolidated += 1
            rows_removed += len(rows)
            rows_created += len(groups)
            logger.info(
                "Consolidated session %s: %d -> %d rows", session_id, len(rows), len(groups),
                extra={"session_id": session_id},
            )

        duration = round(time.monotonic() - started, 1)
        logger.info(
            "Usage consolidation complete: %d sessions, %d rows removed, %d created, "
            "net reduction %d, %.1fs",
            consolidated, rows_removed, rows_created, rows_removed - rows_created, duration,
        )
        return {
            "consolidated": consolidated,
            "skipped": skipped,
            "failed": failed,
            "rows_removed": rows_removed,
            "rows_created": rows_created,
            "net_reduction": rows_removed - rows_created,
            "duration_seconds": duration,
        }

    async def run_consolidation_now(self, session: AsyncSession) -> dict:
        """Run one consolidation pass immediately and wrap the outcome."""
        try:
            counts = await self.consolidate_old_sessions(session)
        except SQLAlchemyError as e:
            logger.exception("Usage consolidation failed")
            return {"success": False, "error": str(e), "code": "DATABASE_ERROR"}
        return {"success": True, **counts}
