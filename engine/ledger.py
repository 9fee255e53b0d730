# engine/ledger.py
"""
Answer ledger: one row per (session, question), last accepted write wins.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from engine.clock import utcnow
from engine.results import EngineError, ErrorCode
from models import STATUS_IN_PROGRESS, AssessmentAnswer, AssessmentSession

logger = logging.getLogger("assessment-sessions.ledger")


def lower_time_snapshot(db: Session, session_id: str, seconds: Optional[int]) -> None:
    """Persist a client-reported remaining time, but never raise the stored value."""
    if seconds is None or seconds < 0:
        return
    db.execute(
        update(AssessmentSession)
        .where(
            AssessmentSession.id == session_id,
            AssessmentSession.status == STATUS_IN_PROGRESS,
            AssessmentSession.time_remaining_seconds > seconds,
        )
        .values(time_remaining_seconds=int(seconds))
    )


class AnswerLedger:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock

    def record(
        self,
        session: AssessmentSession,
        question_id: str,
        selected_index: int,
        time_spent_seconds: int = 0,
        option_count: Optional[int] = None,
        time_remaining_seconds: Optional[int] = None,
    ) -> AssessmentAnswer:
        if session.status != STATUS_IN_PROGRESS:
            raise EngineError(
                ErrorCode.SESSION_NOT_ACTIVE,
                "This session is no longer accepting answers.",
                status=session.status,
            )
        if question_id not in (session.question_order or []):
            raise EngineError(ErrorCode.INVALID_ANSWER, "Question is not part of this session.")
        if selected_index < 0 or (option_count is not None and selected_index >= option_count):
            raise EngineError(ErrorCode.INVALID_ANSWER, "Selected option does not exist.")

        answered_at = self.clock()
        spent = max(0, int(round(time_spent_seconds or 0)))

        session_id = session.id
        row = self._get(session_id, question_id)
        if row is None:
            row = AssessmentAnswer(
                session_id=session_id,
                question_id=question_id,
                selected_index=selected_index,
                answered_at=answered_at,
                time_spent_seconds=spent,
            )
            self.db.add(row)
            try:
                self.db.flush()
            except IntegrityError:
                # a concurrent write for the same key landed first; overwrite it
                self.db.rollback()
                row = self._get(session_id, question_id)
                if row is None:
                    raise
                self._overwrite(row, selected_index, answered_at, spent)
        else:
            self._overwrite(row, selected_index, answered_at, spent)

        lower_time_snapshot(self.db, session_id, time_remaining_seconds)
        self.db.commit()
        logger.debug("answer recorded session=%s question=%s", session_id, question_id)
        return row

    @staticmethod
    def _overwrite(
        row: AssessmentAnswer, selected_index: int, answered_at: datetime, spent: int
    ) -> None:
        row.selected_index = selected_index
        row.answered_at = answered_at
        row.time_spent_seconds = spent

    def _get(self, session_id: str, question_id: str) -> Optional[AssessmentAnswer]:
        return self.db.scalars(
            select(AssessmentAnswer).where(
                AssessmentAnswer.session_id == session_id,
                AssessmentAnswer.question_id == question_id,
            )
        ).one_or_none()

    def get_answers(self, session_id: str) -> Dict[str, AssessmentAnswer]:
        rows = self.db.scalars(
            select(AssessmentAnswer).where(AssessmentAnswer.session_id == session_id)
        ).all()
        return {r.question_id: r for r in rows}
