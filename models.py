from __future__ import annotations

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db import Base

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_TIMED_OUT = "timed_out"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_TIMED_OUT)


class AssessmentSession(Base):
    __tablename__ = "assessment_sessions"
    __table_args__ = (
        sa.Index("ix_assessment_sessions_lookup", "assessment_id", "user_id", "status"),
        # at most one open attempt per candidate and assessment
        sa.Index(
            "uq_assessment_sessions_open_attempt",
            "assessment_id",
            "user_id",
            unique=True,
            sqlite_where=sa.text("status = 'in_progress'"),
            postgresql_where=sa.text("status = 'in_progress'"),
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    assessment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_IN_PROGRESS)
    # fixed at start; resumption depends on it never changing
    question_order: Mapped[list] = mapped_column(JSON, nullable=False)
    time_remaining_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    tab_switch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tab_switch_log: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    passed: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AssessmentAnswer(Base):
    __tablename__ = "assessment_answers"
    __table_args__ = (UniqueConstraint("session_id", "question_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assessment_sessions.id", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[str] = mapped_column(String(64), nullable=False)
    selected_index: Mapped[int] = mapped_column(Integer, nullable=False)
    answered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
