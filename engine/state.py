# engine/state.py
"""
Session state machine: in_progress -> completed | timed_out.

Finalization is idempotent. The terminal write is conditional on the row
still being in_progress, so when a timer expiry and a manual finish race,
only the first write lands and the other call returns the stored result.
"""

from __future__ import annotations

import hmac
import logging
import math
import random
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bank import AssessmentConfig
from engine.clock import as_utc, utcnow
from engine.ledger import AnswerLedger
from engine.results import EngineError, ErrorCode
from engine.scoring import ScoreResult, score_session
from models import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_TIMED_OUT,
    AssessmentSession,
)

logger = logging.getLogger("assessment-sessions.state")

REASON_MANUAL = "manual"
REASON_TIMEOUT = "timeout"
COMPLETION_REASONS = (REASON_MANUAL, REASON_TIMEOUT)

ConfigLookup = Callable[[str], Optional[AssessmentConfig]]


def parse_session_id(session_id: str) -> str:
    try:
        return str(uuid.UUID(str(session_id)))
    except (ValueError, TypeError, AttributeError):
        raise EngineError(ErrorCode.INVALID_SESSION_ID, "Malformed session id.") from None


def access_code_matches(expected: str, provided: Optional[str]) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class SessionStateMachine:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.rng = rng or random.SystemRandom()

    # --- lookup --------------------------------------------------------------------

    def load(self, session_id: str, user_id: Optional[str] = None) -> AssessmentSession:
        sid = parse_session_id(session_id)
        session = self.db.get(AssessmentSession, sid)
        # someone else's session looks exactly like a missing one
        if session is None or (user_id is not None and session.user_id != user_id):
            raise EngineError(ErrorCode.SESSION_NOT_FOUND, "Session not found.")
        return session

    def find_in_progress(self, assessment_id: str, user_id: str) -> Optional[AssessmentSession]:
        return self.db.scalars(
            select(AssessmentSession).where(
                AssessmentSession.assessment_id == assessment_id,
                AssessmentSession.user_id == user_id,
                AssessmentSession.status == STATUS_IN_PROGRESS,
            )
        ).first()

    def past_sessions(self, assessment_id: str, user_id: str) -> List[AssessmentSession]:
        return list(
            self.db.scalars(
                select(AssessmentSession).where(
                    AssessmentSession.assessment_id == assessment_id,
                    AssessmentSession.user_id == user_id,
                )
            ).all()
        )

    # --- start / resume ------------------------------------------------------------

    def start(
        self,
        get_config: ConfigLookup,
        assessment_id: str,
        user_id: str,
        access_code: Optional[str] = None,
    ) -> Tuple[AssessmentSession, bool]:
        """Returns (session, resumed)."""
        existing = self.find_in_progress(assessment_id, user_id)
        if existing is not None:
            logger.info("resuming session=%s user=%s", existing.id, user_id)
            return existing, True

        cfg = get_config(assessment_id)
        if cfg is None or not cfg.is_published:
            raise EngineError(
                ErrorCode.ASSESSMENT_NOT_FOUND, "Assessment not found or not published."
            )
        self._check_access(cfg, access_code)
        now = self.clock()
        self._check_schedule(cfg, now)
        self._check_attempts(cfg, user_id, now)

        session = AssessmentSession(
            assessment_id=assessment_id,
            user_id=user_id,
            status=STATUS_IN_PROGRESS,
            question_order=self._question_order(cfg),
            time_remaining_seconds=cfg.time_limit_minutes * 60,
            tab_switch_count=0,
            tab_switch_log=[],
            started_at=now,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            # a parallel start won; hand back its session
            self.db.rollback()
            existing = self.find_in_progress(assessment_id, user_id)
            if existing is None:
                raise
            return existing, True
        logger.info(
            "session created session=%s assessment=%s user=%s",
            session.id, assessment_id, user_id,
        )
        return session, False

    def _check_access(self, cfg: AssessmentConfig, access_code: Optional[str]) -> None:
        if cfg.access_code and not access_code_matches(cfg.access_code, access_code):
            raise EngineError(ErrorCode.INVALID_ACCESS_CODE, "Invalid access code.")

    def _check_schedule(self, cfg: AssessmentConfig, now: datetime) -> None:
        if cfg.start_date is not None and as_utc(cfg.start_date) > now:
            raise EngineError(
                ErrorCode.ASSESSMENT_NOT_OPEN,
                "This assessment has not started yet.",
                opens_at=as_utc(cfg.start_date).isoformat(),
            )
        if cfg.end_date is not None and as_utc(cfg.end_date) < now:
            raise EngineError(ErrorCode.ASSESSMENT_NOT_OPEN, "This assessment has closed.")

    def _check_attempts(self, cfg: AssessmentConfig, user_id: str, now: datetime) -> None:
        if not cfg.max_attempts and not cfg.cooldown_minutes:
            return
        past = self.past_sessions(cfg.id, user_id)

        if cfg.max_attempts and len(past) >= cfg.max_attempts:
            raise EngineError(
                ErrorCode.ATTEMPT_LIMIT_EXCEEDED,
                "Maximum attempts reached.",
                max_attempts=cfg.max_attempts,
                attempts_used=len(past),
                remaining_attempts=0,
            )

        if cfg.cooldown_minutes:
            finished = [as_utc(s.completed_at) for s in past if s.completed_at is not None]
            if finished:
                cooldown_end = max(finished) + timedelta(minutes=cfg.cooldown_minutes)
                if now < cooldown_end:
                    wait = (cooldown_end - now).total_seconds()
                    minutes_left = math.ceil(wait / 60)
                    raise EngineError(
                        ErrorCode.COOLDOWN_ACTIVE,
                        f"Please wait {minutes_left} minute{'s' if minutes_left != 1 else ''} "
                        "before retaking.",
                        retry_after_seconds=math.ceil(wait),
                        minutes_left=minutes_left,
                        remaining_attempts=(
                            cfg.max_attempts - len(past) if cfg.max_attempts else None
                        ),
                    )

    def _question_order(self, cfg: AssessmentConfig) -> List[str]:
        ids = [q.id for q in cfg.questions]
        if len(ids) < cfg.question_count:
            raise EngineError(
                ErrorCode.QUESTIONS_UNAVAILABLE,
                "Not enough questions available for this assessment.",
                available=len(ids),
                required=cfg.question_count,
            )
        if cfg.shuffle_questions:
            self.rng.shuffle(ids)
        return ids[: cfg.question_count]

    # --- finalization --------------------------------------------------------------

    def score(self, session: AssessmentSession, cfg: Optional[AssessmentConfig]) -> ScoreResult:
        answers = AnswerLedger(self.db, self.clock).get_answers(session.id)
        order = list(session.question_order or [])
        if cfg is None:
            logger.warning(
                "assessment %s missing from catalog; scoring session=%s as all wrong",
                session.assessment_id, session.id,
            )
            return score_session(order, answers, {}, pass_score=100)
        correct_index = {q.id: q.correct_index for q in cfg.questions}
        return score_session(
            order, answers, correct_index, cfg.pass_score, question_count=cfg.question_count
        )

    def complete(
        self,
        session: AssessmentSession,
        cfg: Optional[AssessmentConfig],
        reason: str,
        time_remaining_seconds: Optional[int] = None,
    ) -> AssessmentSession:
        if session.is_terminal:
            logger.debug("complete() on terminal session=%s; returning stored result", session.id)
            return session

        result = self.score(session, cfg)

        remaining = session.time_remaining_seconds or 0
        if reason == REASON_TIMEOUT:
            remaining = 0
        elif time_remaining_seconds is not None:
            # a reported value can only shorten the clock
            remaining = max(0, min(remaining, int(time_remaining_seconds)))
        status = STATUS_COMPLETED if reason == REASON_MANUAL or remaining > 0 else STATUS_TIMED_OUT

        outcome = self.db.execute(
            update(AssessmentSession)
            .where(
                AssessmentSession.id == session.id,
                AssessmentSession.status == STATUS_IN_PROGRESS,
            )
            .values(
                status=status,
                completed_at=self.clock(),
                score=result.score,
                passed=result.passed,
                time_remaining_seconds=remaining,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if outcome.rowcount:
            logger.info(
                "session finalized session=%s status=%s score=%s reason=%s",
                session.id, status, result.score, reason,
            )
        else:
            logger.debug("finalization race lost for session=%s; keeping stored result", session.id)
        self.db.refresh(session)
        return session

    def expire_stale(self, get_config: ConfigLookup, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        open_sessions = self.db.scalars(
            select(AssessmentSession).where(AssessmentSession.status == STATUS_IN_PROGRESS)
        ).all()
        expired = 0
        for s in open_sessions:
            cfg = get_config(s.assessment_id)
            if cfg is None:
                continue
            deadline = as_utc(s.started_at) + timedelta(minutes=cfg.time_limit_minutes)
            if now <= deadline:
                continue
            self.complete(s, cfg, REASON_TIMEOUT)
            if s.status == STATUS_TIMED_OUT:
                expired += 1
        if expired:
            logger.info("expired %d stale session(s)", expired)
        return expired
