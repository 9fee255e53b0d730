# engine/attribution.py
"""
Post-hoc attribution of tab_hidden violations to questions.

There is no record of which question was on screen. Each answer gives a
window [answered_at - time_spent_seconds, answered_at] that is used as a
proxy, so the resulting heatmap is an estimate and must be presented as one.

Policy: a violation that falls outside every window goes to the question
after the most recently answered one. A violation logged before any answer
exists, or after the last question, has no target and is only counted in
the total.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from engine.clock import as_utc, parse_timestamp
from engine.violations import TAB_HIDDEN

STEM_LIMIT = 60


@dataclass(frozen=True)
class AnswerWindow:
    question_id: str
    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end


@dataclass
class HeatmapRow:
    question_index: int
    question_id: str
    stem: str
    violation_count: int


@dataclass
class Heatmap:
    questions: List[HeatmapRow]
    total_violations: int
    flagged_session_count: int
    approximate: bool = True


def truncate_stem(stem: str, limit: int = STEM_LIMIT) -> str:
    stem = stem or ""
    if len(stem) > limit:
        return stem[: limit - 3] + "..."
    return stem


def answer_windows(answers: Iterable[Any]) -> List[AnswerWindow]:
    """Windows sorted by answered_at; answers without a timestamp are skipped."""
    windows = []
    for a in answers:
        end = as_utc(a.answered_at)
        if end is None:
            continue
        spent = max(0, a.time_spent_seconds or 0)
        windows.append(AnswerWindow(a.question_id, end - timedelta(seconds=spent), end))
    windows.sort(key=lambda w: w.end)
    return windows


def attribute_violation(
    ts: datetime, windows: Sequence[AnswerWindow], question_order: Sequence[str]
) -> Optional[str]:
    for w in windows:
        if w.contains(ts):
            return w.question_id
    if not windows:
        return None
    last = windows[-1].question_id
    try:
        nxt = list(question_order).index(last) + 1
    except ValueError:
        return None
    if nxt < len(question_order):
        return question_order[nxt]
    return None


def session_tab_hidden_times(session: Any) -> List[datetime]:
    times = []
    for entry in session.tab_switch_log or []:
        if not isinstance(entry, dict) or entry.get("type") != TAB_HIDDEN:
            continue
        try:
            times.append(parse_timestamp(entry["timestamp"]))
        except (KeyError, TypeError, ValueError):
            continue
    return times


def attribute_session(session: Any, answers: Iterable[Any]) -> Dict[Optional[str], int]:
    """Counts per question id for one session; key None collects unattributed events."""
    windows = answer_windows(answers)
    order = list(session.question_order or [])
    counts: Dict[Optional[str], int] = {}
    for ts in session_tab_hidden_times(session):
        target = attribute_violation(ts, windows, order)
        counts[target] = counts.get(target, 0) + 1
    return counts


def build_heatmap(
    sessions: Sequence[Any],
    answers_by_session: Dict[str, List[Any]],
    catalog_order: Sequence[str],
    stems: Dict[str, str],
) -> Heatmap:
    """
    Aggregate across flagged sessions (tab_switch_count > 0). Rows follow the
    catalog's question order, limited to questions some flagged session saw.
    """
    flagged = [s for s in sessions if (s.tab_switch_count or 0) > 0]
    per_question: Dict[str, int] = {}
    seen = set()
    total = 0

    for s in flagged:
        seen.update(s.question_order or [])
        for qid, n in attribute_session(s, answers_by_session.get(s.id, [])).items():
            total += n
            if qid is not None:
                per_question[qid] = per_question.get(qid, 0) + n

    known = set(catalog_order)
    ordered = [q for q in catalog_order if q in seen]
    ordered += sorted(q for q in seen if q not in known)

    rows = [
        HeatmapRow(
            question_index=i + 1,
            question_id=qid,
            stem=truncate_stem(stems.get(qid) or f"Question {i + 1}"),
            violation_count=per_question.get(qid, 0),
        )
        for i, qid in enumerate(ordered)
    ]
    return Heatmap(questions=rows, total_violations=total, flagged_session_count=len(flagged))
