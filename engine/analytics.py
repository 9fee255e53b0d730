# engine/analytics.py
"""
Cohort statistics over persisted sessions of one assessment.

The module-level functions are pure and take session/answer rows (anything
with the ORM attribute names). AnalyticsService loads rows and assembles the
report shapes.
"""

from __future__ import annotations

import csv
import io
import logging
import statistics
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from bank import AssessmentConfig
from engine.attribution import build_heatmap
from engine.clock import as_utc, format_timestamp
from engine.scoring import is_correct, round2, round_half_up
from models import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    TERMINAL_STATUSES,
    AssessmentAnswer,
    AssessmentSession,
)
from schemas.analytics import (
    ActiveSession,
    AnalyticsSummary,
    AssessmentResults,
    HeatmapQuestion,
    ProgressionPoint,
    QuestionAnalytics,
    QuestionStats,
    ResultRow,
    ResultStats,
    TabSwitchPoint,
    TopPerformer,
    TrendPoint,
    ViolationHeatmap,
)

logger = logging.getLogger("assessment-sessions.analytics")

BUCKETS = 10
TREND_CAP = 10
DISCRIMINATION_MIN_SESSIONS = 4
DISCRIMINATION_GROUP_SHARE = 0.27
RESULTS_LIMIT = 1000
CSV_HEADER = [
    "User ID", "Status", "Score", "Passed", "Tab Switches", "Started At", "Completed At",
]


# --- Pure helpers ------------------------------------------------------------------


def score_distribution(scores: Sequence[int]) -> List[int]:
    buckets = [0] * BUCKETS
    for s in scores:
        s = max(0, min(100, int(s)))
        # exactly 100 joins 90-99 instead of opening an 11th bucket
        idx = BUCKETS - 1 if s == 100 else s // 10
        buckets[idx] += 1
    return buckets


def median_score(scores: Sequence[int]) -> Optional[float]:
    if not scores:
        return None
    return float(statistics.median(scores))


def discrimination_indices(
    sessions: Sequence[Any],
    answers_by_session: Dict[str, Dict[str, Any]],
    correct_index: Dict[str, int],
) -> Dict[str, float]:
    """
    Classical top-27% / bottom-27% item discrimination.

    Only stored answers count as responses. A question with no response in
    either group is left out.
    """
    if len(sessions) < DISCRIMINATION_MIN_SESSIONS:
        return {}
    ranked = sorted(sessions, key=lambda s: s.score or 0, reverse=True)
    n = max(1, round_half_up(len(ranked) * DISCRIMINATION_GROUP_SHARE))
    top, bottom = ranked[:n], ranked[-n:]

    def rate(group: Sequence[Any], qid: str) -> Optional[float]:
        responded = [s for s in group if qid in answers_by_session.get(s.id, {})]
        if not responded:
            return None
        right = sum(
            1
            for s in responded
            if is_correct(answers_by_session[s.id][qid], correct_index)
        )
        return right / len(responded)

    qids: List[str] = []
    for s in top + bottom:
        for qid in s.question_order or []:
            if qid not in qids:
                qids.append(qid)

    out: Dict[str, float] = {}
    for qid in qids:
        top_rate, bottom_rate = rate(top, qid), rate(bottom, qid)
        if top_rate is None or bottom_rate is None:
            continue
        out[qid] = round2(top_rate - bottom_rate)
    return out


def attempts_by_hour(sessions: Sequence[Any], tz: Optional[tzinfo] = None) -> List[int]:
    """tz=None buckets by the server's local time zone."""
    hours = [0] * 24
    for s in sessions:
        started = as_utc(s.started_at)
        if started is None:
            continue
        hours[started.astimezone(tz).hour] += 1
    return hours


def _finished_with_score(sessions: Sequence[Any]) -> List[Any]:
    return [s for s in sessions if s.status in TERMINAL_STATUSES and s.score is not None]


def score_trend(sessions: Sequence[Any]) -> List[TrendPoint]:
    ordered = sorted(
        _finished_with_score(sessions),
        key=lambda s: as_utc(s.completed_at or s.started_at),
    )
    by_user: Dict[str, List[int]] = {}
    for s in ordered:
        by_user.setdefault(s.user_id, []).append(s.score)

    longest = min(TREND_CAP, max((len(v) for v in by_user.values()), default=0))
    trend = []
    for i in range(longest):
        at_attempt = [v[i] for v in by_user.values() if i < len(v)]
        if at_attempt:
            trend.append(TrendPoint(attempt=i + 1, avg_score=round_half_up(sum(at_attempt) / len(at_attempt))))
    return trend


def percentile_of(score: int, scores: Sequence[int]) -> Dict[str, int]:
    if not scores:
        return {"percentile": 100, "rank": 1, "total_sessions": 1}
    above = sum(1 for s in scores if s > score)
    below = sum(1 for s in scores if s < score)
    return {
        "percentile": round_half_up(below / len(scores) * 100),
        "rank": above + 1,
        "total_sessions": len(scores),
    }


# --- Report assembly ---------------------------------------------------------------


class AnalyticsService:
    def __init__(
        self,
        db: Session,
        get_config: Callable[[str], Optional[AssessmentConfig]],
    ) -> None:
        self.db = db
        self.get_config = get_config

    def _sessions(self, assessment_id: str) -> List[AssessmentSession]:
        return list(
            self.db.scalars(
                select(AssessmentSession).where(AssessmentSession.assessment_id == assessment_id)
            ).all()
        )

    def _answers_by_session(self, session_ids: Sequence[str]) -> Dict[str, Dict[str, AssessmentAnswer]]:
        out: Dict[str, Dict[str, AssessmentAnswer]] = {sid: {} for sid in session_ids}
        if not session_ids:
            return out
        rows = self.db.scalars(
            select(AssessmentAnswer).where(AssessmentAnswer.session_id.in_(list(session_ids)))
        ).all()
        for r in rows:
            out.setdefault(r.session_id, {})[r.question_id] = r
        return out

    def summary(self, assessment_id: str, tz: Optional[tzinfo] = None) -> AnalyticsSummary:
        sessions = self._sessions(assessment_id)
        completed = [s for s in sessions if s.status == STATUS_COMPLETED]
        scores = [s.score or 0 for s in completed]

        avg_time = None
        cfg = self.get_config(assessment_id)
        if cfg is not None and completed:
            limit = cfg.time_limit_minutes * 60
            used = sum(limit - (s.time_remaining_seconds or 0) for s in completed)
            avg_time = round(used / len(completed) / 60, 1)

        top = sorted(completed, key=lambda s: s.score or 0, reverse=True)[:5]

        return AnalyticsSummary(
            score_distribution=score_distribution(scores),
            completion_rate=round_half_up(len(completed) / len(sessions) * 100) if sessions else 0,
            avg_time_minutes=avg_time,
            median_score=median_score(scores),
            total_started=len(sessions),
            total_completed=len(completed),
            top_performers=[
                TopPerformer(user_id=s.user_id, score=s.score or 0, completed_at=s.completed_at)
                for s in top
            ],
            tab_switch_correlation=[
                TabSwitchPoint(tab_switches=s.tab_switch_count or 0, score=s.score)
                for s in _finished_with_score(sessions)
            ],
            attempts_by_hour=attempts_by_hour(sessions, tz),
            score_trend=score_trend(sessions),
        )

    def question_analytics(self, assessment_id: str) -> QuestionAnalytics:
        cfg = self.get_config(assessment_id)
        questions = cfg.question_map() if cfg is not None else {}
        correct_index = {qid: q.correct_index for qid, q in questions.items()}

        completed = [s for s in self._sessions(assessment_id) if s.status == STATUS_COMPLETED]
        answers = self._answers_by_session([s.id for s in completed])
        disc = discrimination_indices(completed, answers, correct_index)

        stats: Dict[str, Dict[str, int]] = {}
        for s in completed:
            given = answers.get(s.id, {})
            for qid in s.question_order or []:
                ans = given.get(qid)
                if ans is None:
                    continue
                entry = stats.setdefault(qid, {"total": 0, "correct": 0, "time_sum": 0, "time_n": 0})
                entry["total"] += 1
                if is_correct(ans, correct_index):
                    entry["correct"] += 1
                if (ans.time_spent_seconds or 0) > 0:
                    entry["time_sum"] += ans.time_spent_seconds
                    entry["time_n"] += 1

        rows = [
            QuestionStats(
                question_id=qid,
                stem=questions[qid].stem if qid in questions else "Unknown question",
                total_attempts=e["total"],
                correct_count=e["correct"],
                percent_correct=round_half_up(e["correct"] / e["total"] * 100) if e["total"] else 0,
                avg_time_seconds=round_half_up(e["time_sum"] / e["time_n"]) if e["time_n"] else None,
                discrimination_index=disc.get(qid),
            )
            for qid, e in stats.items()
        ]
        # hardest first
        rows.sort(key=lambda r: r.percent_correct)
        return QuestionAnalytics(questions=rows)

    def violation_heatmap(self, assessment_id: str) -> ViolationHeatmap:
        sessions = [s for s in self._sessions(assessment_id) if (s.tab_switch_count or 0) > 0]
        answers = self._answers_by_session([s.id for s in sessions])
        cfg = self.get_config(assessment_id)
        catalog = [q.id for q in cfg.questions] if cfg is not None else []
        stems = {q.id: q.stem for q in cfg.questions} if cfg is not None else {}

        heatmap = build_heatmap(
            sessions,
            {sid: list(rows.values()) for sid, rows in answers.items()},
            catalog,
            stems,
        )
        return ViolationHeatmap(
            questions=[
                HeatmapQuestion(
                    question_index=r.question_index,
                    question_id=r.question_id,
                    stem=r.stem,
                    violation_count=r.violation_count,
                )
                for r in heatmap.questions
            ],
            total_violations=heatmap.total_violations,
            flagged_session_count=heatmap.flagged_session_count,
        )

    def percentile(self, session: AssessmentSession) -> Dict[str, int]:
        scores = self.db.scalars(
            select(AssessmentSession.score).where(
                AssessmentSession.assessment_id == session.assessment_id,
                AssessmentSession.status.in_(TERMINAL_STATUSES),
                AssessmentSession.score.is_not(None),
            )
        ).all()
        return percentile_of(session.score or 0, list(scores))

    def candidate_progression(self, user_id: str) -> List[ProgressionPoint]:
        sessions = self.db.scalars(
            select(AssessmentSession).where(
                AssessmentSession.user_id == user_id,
                AssessmentSession.status.in_(TERMINAL_STATUSES),
            )
        ).all()
        ordered = sorted(sessions, key=lambda s: as_utc(s.completed_at or s.started_at))
        points = []
        for s in ordered:
            cfg = self.get_config(s.assessment_id)
            points.append(
                ProgressionPoint(
                    session_id=s.id,
                    assessment_id=s.assessment_id,
                    assessment_title=cfg.title if cfg is not None and cfg.title else "Unknown",
                    date=s.completed_at,
                    score=s.score or 0,
                    passed=bool(s.passed),
                )
            )
        return points

    def active_sessions(self, assessment_id: str) -> List[ActiveSession]:
        sessions = self.db.scalars(
            select(AssessmentSession).where(
                AssessmentSession.assessment_id == assessment_id,
                AssessmentSession.status == STATUS_IN_PROGRESS,
            )
        ).all()
        answers = self._answers_by_session([s.id for s in sessions])
        return [
            ActiveSession(
                session_id=s.id,
                user_id=s.user_id,
                started_at=s.started_at,
                time_remaining_seconds=s.time_remaining_seconds,
                questions_answered=len(answers.get(s.id, {})),
                total_questions=len(s.question_order or []),
                tab_switch_count=s.tab_switch_count or 0,
            )
            for s in sessions
        ]

    def results(self, assessment_id: str) -> AssessmentResults:
        """All sessions for the creator's results table, most recently finished first."""
        sessions = self._sessions(assessment_id)
        done = sorted(
            (s for s in sessions if s.completed_at is not None),
            key=lambda s: as_utc(s.completed_at),
            reverse=True,
        )
        rows = (done + [s for s in sessions if s.completed_at is None])[:RESULTS_LIMIT]

        finished = [s for s in rows if s.status in TERMINAL_STATUSES]
        avg_score = pass_rate = 0
        if finished:
            avg_score = round_half_up(sum(s.score or 0 for s in finished) / len(finished))
            pass_rate = round_half_up(sum(1 for s in finished if s.passed) / len(finished) * 100)

        return AssessmentResults(
            sessions=[
                ResultRow(
                    session_id=s.id,
                    user_id=s.user_id,
                    status=s.status,
                    score=s.score,
                    passed=s.passed,
                    tab_switch_count=s.tab_switch_count or 0,
                    started_at=s.started_at,
                    completed_at=s.completed_at,
                )
                for s in rows
            ],
            stats=ResultStats(avg_score=avg_score, pass_rate=pass_rate, total_attempts=len(rows)),
        )

    def results_csv(self, assessment_id: str) -> str:
        ordered = sorted(
            self._sessions(assessment_id), key=lambda s: as_utc(s.started_at), reverse=True
        )
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for s in ordered:
            writer.writerow(
                [
                    s.user_id,
                    s.status,
                    "" if s.score is None else s.score,
                    "" if s.passed is None else ("Yes" if s.passed else "No"),
                    s.tab_switch_count or 0,
                    format_timestamp(s.started_at) if s.started_at else "",
                    format_timestamp(s.completed_at) if s.completed_at else "",
                ]
            )
        # spreadsheet apps need the BOM to read the file as UTF-8
        return "\ufeff" + buf.getvalue()
