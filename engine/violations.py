# engine/violations.py
"""
Append-only integrity log kept on the session row.

Violation counting is advisory: store failures are logged and swallowed so
they never interrupt the exam.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from engine.clock import format_timestamp, utcnow
from engine.results import EngineError, ErrorCode
from models import STATUS_IN_PROGRESS, AssessmentSession

logger = logging.getLogger("assessment-sessions.violations")

TAB_HIDDEN = "tab_hidden"
FULLSCREEN_EXIT = "fullscreen_exit"
VIOLATION_TYPES = (TAB_HIDDEN, FULLSCREEN_EXIT)
APPEND_ATTEMPTS = 3


class ViolationRecorder:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock

    def append(
        self,
        session: AssessmentSession,
        violation_type: str,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        """Returns True if the entry was stored, False if the store failed."""
        if violation_type not in VIOLATION_TYPES:
            raise EngineError(
                ErrorCode.INVALID_VIOLATION_TYPE,
                "Unknown violation type.",
                allowed=list(VIOLATION_TYPES),
            )
        if session.status != STATUS_IN_PROGRESS:
            raise EngineError(
                ErrorCode.SESSION_NOT_ACTIVE,
                "This session is not active.",
                status=session.status,
            )

        entry = {"timestamp": format_timestamp(timestamp or self.clock()), "type": violation_type}
        try:
            for _ in range(APPEND_ATTEMPTS):
                if self._append_once(session.id, entry):
                    return True
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(
                "violation append failed session=%s type=%s", session.id, violation_type,
                exc_info=True,
            )
            return False
        logger.warning(
            "violation append gave up after %d attempts session=%s type=%s",
            APPEND_ATTEMPTS, session.id, violation_type,
        )
        return False

    def _append_once(self, session_id: str, entry: Dict[str, str]) -> bool:
        # re-read inside the transaction; the count guards against a parallel append
        current = self.db.execute(
            select(AssessmentSession.tab_switch_count, AssessmentSession.tab_switch_log)
            .where(
                AssessmentSession.id == session_id,
                AssessmentSession.status == STATUS_IN_PROGRESS,
            )
            .with_for_update()
        ).one_or_none()
        if current is None:
            self.db.rollback()
            raise EngineError(ErrorCode.SESSION_NOT_ACTIVE, "This session is not active.")
        count, log = current
        outcome = self.db.execute(
            update(AssessmentSession)
            .where(
                AssessmentSession.id == session_id,
                AssessmentSession.status == STATUS_IN_PROGRESS,
                AssessmentSession.tab_switch_count == count,
            )
            .values(tab_switch_count=count + 1, tab_switch_log=[*(log or []), entry])
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return bool(outcome.rowcount)


class ViolationDebouncer:
    """Drops repeat events of the same type inside the window."""

    def __init__(
        self, window_seconds: float = 2.0, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.window_seconds = window_seconds
        self.clock = clock
        self._last: Dict[str, float] = {}

    def should_report(self, violation_type: str) -> bool:
        now = self.clock()
        last = self._last.get(violation_type)
        if last is not None and now - last <= self.window_seconds:
            return False
        self._last[violation_type] = now
        return True
