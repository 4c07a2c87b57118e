"""SQLAlchemy models for streaming sessions and translation usage."""

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from openword_admin.common.models import Base, TimestampMixin, generate_uuid, utcnow


class StreamingSessionModel(Base, TimestampMixin):
    __tablename__ = "streaming_sessions"
    __table_args__ = (
        Index("ix_streaming_sessions_org_started", "organisation_id", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organisation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("organisations.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # {"transcript": 45000, "es-ES": 52000}
    characters_per_language: Mapped[dict] = mapped_column(JSON, default=dict)


class TranslationUsageModel(Base):
    __tablename__ = "translation_usage"
    __table_args__ = (
        Index("ix_translation_usage_session_consolidated", "session_id", "is_consolidated"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organisation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("organisations.id", ondelete="SET NULL"), nullable=True
    )
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("streaming_sessions.id", ondelete="CASCADE"), nullable=False
    )
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    character_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    client_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_date: Mapped[date | None] = mapped_column("date", Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    is_consolidated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
