# engine/orchestrator.py
"""
Public boundary of the session engine.

Every method returns an ActionResult. Expected conditions come back as tagged
failures; unexpected store faults are logged here and turned into a generic
RETRY_LATER so no internal detail reaches the candidate.
"""

from __future__ import annotations

import logging
import random
from contextlib import contextmanager
from datetime import datetime, tzinfo
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

import bank
from engine.analytics import AnalyticsService
from engine.clock import utcnow
from engine.ledger import AnswerLedger, lower_time_snapshot
from engine.results import (
    ActionResult,
    EngineError,
    ErrorCode,
    failure,
    retry_later,
    success,
)
from engine.scoring import count_correct, is_correct
from engine.state import COMPLETION_REASONS, ConfigLookup, SessionStateMachine
from engine.violations import ViolationRecorder
from schemas.sessions import (
    AnswerOut,
    CompletionOut,
    PercentileOut,
    QuestionOut,
    ResumeOut,
    ReviewItem,
    SessionOut,
    SessionResultsOut,
    ViolationAck,
    ViolationsOut,
)

logger = logging.getLogger("assessment-sessions.orchestrator")


class SessionOrchestrator:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        get_config: ConfigLookup = bank.get_assessment_config,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        if session_factory is None:
            from db import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.get_config = get_config
        self.clock = clock
        self.rng = rng

    # --- plumbing ------------------------------------------------------------------

    @contextmanager
    def _db(self) -> Iterator[Session]:
        with self.session_factory() as db:
            yield db

    def _run(self, op: str, fn: Callable[[Session], Any]) -> ActionResult:
        try:
            with self._db() as db:
                return success(fn(db))
        except EngineError as e:
            return ActionResult(ok=False, error=e.to_failure())
        except Exception:
            logger.exception("%s failed", op)
            return retry_later()

    def _machine(self, db: Session) -> SessionStateMachine:
        return SessionStateMachine(db, self.clock, self.rng)

    @staticmethod
    def _require_user(user_id: Optional[str]) -> Optional[ActionResult]:
        if not user_id:
            return failure(ErrorCode.UNAUTHENTICATED, "Sign in to continue.")
        return None

    def _questions_for(self, session) -> list[QuestionOut]:
        cfg = self.get_config(session.assessment_id)
        by_id = cfg.question_map() if cfg is not None else {}
        return [
            QuestionOut(question_id=qid, stem=by_id[qid].stem, options=by_id[qid].options)
            for qid in session.question_order or []
            if qid in by_id
        ]

    # --- candidate operations ------------------------------------------------------

    def start(
        self, user_id: str, assessment_id: str, access_code: Optional[str] = None
    ) -> ActionResult:
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> SessionOut:
            session, _ = self._machine(db).start(self.get_config, assessment_id, user_id, access_code)
            return SessionOut.model_validate(session)

        return self._run("start", op)

    def questions(self, user_id: str, session_id: str) -> ActionResult:
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> list[QuestionOut]:
            return self._questions_for(self._machine(db).load(session_id, user_id))

        return self._run("questions", op)

    def resume(self, user_id: str, session_id: str) -> ActionResult:
        """The persisted time_remaining_seconds is authoritative; nothing is recomputed."""
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> ResumeOut:
            session = self._machine(db).load(session_id, user_id)
            answers = AnswerLedger(db, self.clock).get_answers(session.id)
            return ResumeOut(
                session=SessionOut.model_validate(session),
                questions=self._questions_for(session),
                answers={qid: AnswerOut.model_validate(a) for qid, a in answers.items()},
            )

        return self._run("resume", op)

    def record_answer(
        self,
        user_id: str,
        session_id: str,
        question_id: str,
        selected_index: int,
        time_spent_seconds: int = 0,
        time_remaining_seconds: Optional[int] = None,
    ) -> ActionResult:
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> AnswerOut:
            session = self._machine(db).load(session_id, user_id)
            cfg = self.get_config(session.assessment_id)
            question = cfg.question_map().get(question_id) if cfg is not None else None
            row = AnswerLedger(db, self.clock).record(
                session,
                question_id,
                selected_index,
                time_spent_seconds,
                option_count=len(question.options) if question is not None else None,
                time_remaining_seconds=time_remaining_seconds,
            )
            return AnswerOut.model_validate(row)

        return self._run("record_answer", op)

    def get_answers(self, user_id: str, session_id: str) -> ActionResult:
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> dict[str, AnswerOut]:
            session = self._machine(db).load(session_id, user_id)
            answers = AnswerLedger(db, self.clock).get_answers(session.id)
            return {qid: AnswerOut.model_validate(a) for qid, a in answers.items()}

        return self._run("get_answers", op)

    def save_remaining(self, user_id: str, session_id: str, seconds: int) -> ActionResult:
        """Persist a countdown value from the live view; the stored snapshot only goes down."""
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> dict:
            session = self._machine(db).load(session_id, user_id)
            lower_time_snapshot(db, session.id, seconds)
            db.commit()
            db.refresh(session)
            return {"time_remaining_seconds": session.time_remaining_seconds}

        return self._run("save_remaining", op)

    def report_violation(
        self,
        user_id: str,
        session_id: str,
        violation_type: str,
        timestamp: Optional[datetime] = None,
    ) -> ActionResult:
        """Never fails the exam flow on a store error; the ack says whether it was kept."""
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> ViolationAck:
            session = self._machine(db).load(session_id, user_id)
            stored = ViolationRecorder(db, self.clock).append(session, violation_type, timestamp)
            return ViolationAck(recorded=stored)

        try:
            with self._db() as db:
                return success(op(db))
        except EngineError as e:
            return ActionResult(ok=False, error=e.to_failure())
        except Exception:
            logger.warning("violation report dropped for session=%s", session_id, exc_info=True)
            return success(ViolationAck(recorded=False))

    def complete(
        self,
        user_id: str,
        session_id: str,
        reason: str = "manual",
        time_remaining_seconds: Optional[int] = None,
    ) -> ActionResult:
        """
        Safe to call more than once. A terminal session is returned unchanged,
        so a timer expiry racing a manual finish yields one effective result.
        """
        denied = self._require_user(user_id)
        if denied is not None:
            return denied
        if reason not in COMPLETION_REASONS:
            return failure(ErrorCode.INVALID_COMPLETION_REASON, "Unknown completion reason.")

        def op(db: Session) -> CompletionOut:
            machine = self._machine(db)
            session = machine.load(session_id, user_id)
            cfg = self.get_config(session.assessment_id)
            session = machine.complete(session, cfg, reason, time_remaining_seconds)
            answers = AnswerLedger(db, self.clock).get_answers(session.id)
            correct_index = {q.id: q.correct_index for q in cfg.questions} if cfg is not None else {}
            return CompletionOut(
                session_id=session.id,
                status=session.status,
                score=session.score or 0,
                passed=bool(session.passed),
                correct=count_correct(session.question_order or [], answers, correct_index),
                total=cfg.question_count if cfg is not None else len(session.question_order or []),
                completed_at=session.completed_at,
                time_remaining_seconds=session.time_remaining_seconds,
            )

        return self._run("complete", op)

    def results(self, user_id: str, session_id: str) -> ActionResult:
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> SessionResultsOut:
            session = self._machine(db).load(session_id, user_id)
            if not session.is_terminal:
                raise EngineError(ErrorCode.SESSION_NOT_FINISHED, "This session is still in progress.")
            cfg = self.get_config(session.assessment_id)
            allow_review = bool(cfg.allow_review) if cfg is not None else False
            by_id = cfg.question_map() if cfg is not None else {}
            correct_index = {qid: q.correct_index for qid, q in by_id.items()}
            answers = AnswerLedger(db, self.clock).get_answers(session.id)

            items = []
            for qid in session.question_order or []:
                q = by_id.get(qid)
                a = answers.get(qid)
                item = ReviewItem(
                    question_id=qid,
                    stem=q.stem if q is not None else "Unknown question",
                    options=q.options if q is not None else [],
                    selected_index=a.selected_index if a is not None else None,
                    time_spent_seconds=a.time_spent_seconds if a is not None else None,
                )
                if allow_review and q is not None:
                    item.correct_index = q.correct_index
                    item.explanation = q.explanation
                    item.is_correct = is_correct(a, correct_index)
                items.append(item)
            return SessionResultsOut(
                session=SessionOut.model_validate(session), allow_review=allow_review, items=items
            )

        return self._run("results", op)

    def percentile(self, user_id: str, session_id: str) -> ActionResult:
        denied = self._require_user(user_id)
        if denied is not None:
            return denied

        def op(db: Session) -> PercentileOut:
            session = self._machine(db).load(session_id, user_id)
            if session.score is None:
                raise EngineError(ErrorCode.SESSION_NOT_FINISHED, "Session has not been scored yet.")
            return PercentileOut(**AnalyticsService(db, self.get_config).percentile(session))

        return self._run("percentile", op)

    # --- creator / batch operations ------------------------------------------------

    def violations(self, session_id: str) -> ActionResult:
        def op(db: Session) -> ViolationsOut:
            session = self._machine(db).load(session_id)
            return ViolationsOut(
                session_id=session.id,
                tab_switch_count=session.tab_switch_count or 0,
                tab_switch_log=list(session.tab_switch_log or []),
            )

        return self._run("violations", op)

    def expire_stale(self, now: Optional[datetime] = None) -> ActionResult:
        return self._run(
            "expire_stale",
            lambda db: {"expired": self._machine(db).expire_stale(self.get_config, now)},
        )

    def _ensure_assessment(self, assessment_id: str) -> None:
        if self.get_config(assessment_id) is None:
            raise EngineError(ErrorCode.ASSESSMENT_NOT_FOUND, "Assessment not found.")

    def analytics_summary(self, assessment_id: str, tz: Optional[tzinfo] = None) -> ActionResult:
        def op(db: Session):
            self._ensure_assessment(assessment_id)
            return AnalyticsService(db, self.get_config).summary(assessment_id, tz)

        return self._run("analytics_summary", op)

    def question_analytics(self, assessment_id: str) -> ActionResult:
        def op(db: Session):
            self._ensure_assessment(assessment_id)
            return AnalyticsService(db, self.get_config).question_analytics(assessment_id)

        return self._run("question_analytics", op)

    def violation_heatmap(self, assessment_id: str) -> ActionResult:
        def op(db: Session):
            self._ensure_assessment(assessment_id)
            return AnalyticsService(db, self.get_config).violation_heatmap(assessment_id)

        return self._run("violation_heatmap", op)

    def active_sessions(self, assessment_id: str) -> ActionResult:
        def op(db: Session):
            self._ensure_assessment(assessment_id)
            return AnalyticsService(db, self.get_config).active_sessions(assessment_id)

        return self._run("active_sessions", op)

    def candidate_progression(self, user_id: str) -> ActionResult:
        return self._run(
            "candidate_progression",
            lambda db: AnalyticsService(db, self.get_config).candidate_progression(user_id),
        )

    def assessment_results(self, assessment_id: str) -> ActionResult:
        def op(db: Session):
            self._ensure_assessment(assessment_id)
            return AnalyticsService(db, self.get_config).results(assessment_id)

        return self._run("assessment_results", op)

    def export_results_csv(self, assessment_id: str) -> ActionResult:
        def op(db: Session) -> str:
            self._ensure_assessment(assessment_id)
            return AnalyticsService(db, self.get_config).results_csv(assessment_id)

        return self._run("export_results_csv", op)
