from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from engine.analytics import (
    attempts_by_hour,
    discrimination_indices,
    median_score,
    percentile_of,
    score_distribution,
    score_trend,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


def _session(sid, score, order=("q1", "q2"), user="u", status="completed", completed_at=None, started_at=T0):
    return SimpleNamespace(
        id=sid,
        score=score,
        question_order=list(order),
        user_id=user,
        status=status,
        completed_at=completed_at,
        started_at=started_at,
    )


def _ans(qid, idx):
    return SimpleNamespace(question_id=qid, selected_index=idx)


def test_score_distribution_puts_100_in_last_bucket():
    buckets = score_distribution([0, 9, 10, 55, 90, 99, 100, 100])
    assert len(buckets) == 10
    assert sum(buckets) == 8
    assert buckets[0] == 2
    assert buckets[1] == 1
    assert buckets[5] == 1
    assert buckets[9] == 4


def test_median_score():
    assert median_score([]) is None
    assert median_score([40, 80, 60]) == 60.0
    assert median_score([40, 80]) == 60.0
    assert median_score([33, 34]) == 33.5


def test_discrimination_needs_four_sessions():
    sessions = [_session(str(i), 50) for i in range(3)]
    assert discrimination_indices(sessions, {}, {"q1": 0}) == {}


def test_discrimination_top_minus_bottom():
    sessions = [_session("a", 100), _session("b", 80), _session("c", 40), _session("d", 0)]
    answers = {
        "a": {"q1": _ans("q1", 0), "q2": _ans("q2", 1)},
        "b": {"q1": _ans("q1", 0), "q2": _ans("q2", 1)},
        "c": {"q1": _ans("q1", 1)},
        "d": {"q1": _ans("q1", 1), "q2": _ans("q2", 1)},
    }
    disc = discrimination_indices(sessions, answers, {"q1": 0, "q2": 1})
    # n = round(4 * 0.27) = 1: top is "a", bottom is "d"
    assert disc == {"q1": 1.0, "q2": 0.0}
    assert all(-1.0 <= v <= 1.0 for v in disc.values())


def test_discrimination_omits_questions_nobody_answered():
    sessions = [_session("a", 100), _session("b", 60), _session("c", 50), _session("d", 0)]
    answers = {
        "a": {"q1": _ans("q1", 0)},
        "b": {"q1": _ans("q1", 0)},
        "c": {"q1": _ans("q1", 1)},
        "d": {"q1": _ans("q1", 1)},
    }
    disc = discrimination_indices(sessions, answers, {"q1": 0, "q2": 0})
    assert disc == {"q1": 1.0}


def test_discrimination_omits_questions_missing_from_a_group():
    sessions = [
        _session("a", 100, order=["q1", "q2"]),
        _session("b", 60, order=["q1"]),
        _session("c", 50, order=["q1"]),
        _session("d", 0, order=["q1"]),
    ]
    answers = {"a": {"q1": _ans("q1", 0), "q2": _ans("q2", 0)}, "d": {"q1": _ans("q1", 0)}}
    disc = discrimination_indices(sessions, answers, {"q1": 0, "q2": 0})
    assert disc == {"q1": 0.0}


def test_attempts_by_hour_in_given_zone():
    sessions = [
        _session("a", 10, started_at=T0),
        _session("b", 10, started_at=T0 + timedelta(minutes=30)),
        _session("c", 10, started_at=datetime(2024, 3, 1, 23, 15)),  # naive, stored as UTC
    ]
    utc = attempts_by_hour(sessions, UTC)
    assert len(utc) == 24
    assert utc[9] == 2 and utc[23] == 1

    ny = attempts_by_hour(sessions, ZoneInfo("America/New_York"))
    assert ny[4] == 2 and ny[18] == 1


def test_score_trend_averages_by_attempt_number():
    sessions = [
        _session("a1", 40, user="alice", completed_at=T0),
        _session("a2", 81, user="alice", completed_at=T0 + timedelta(days=1)),
        _session("b1", 60, user="bob", completed_at=T0 + timedelta(hours=1)),
        _session("b2", 90, user="bob", completed_at=T0 + timedelta(days=2)),
        _session("c1", 70, user="carol", status="timed_out", completed_at=T0),
        _session("x", None, user="dave", status="in_progress"),
    ]
    trend = score_trend(sessions)
    assert [(p.attempt, p.avg_score) for p in trend] == [(1, 57), (2, 86)]


def test_score_trend_is_capped_at_ten_attempts():
    sessions = [
        _session(str(i), i * 5, user="u", completed_at=T0 + timedelta(hours=i)) for i in range(14)
    ]
    assert len(score_trend(sessions)) == 10


def test_percentile_of():
    assert percentile_of(80, [40, 60, 80, 100]) == {"percentile": 50, "rank": 2, "total_sessions": 4}
    assert percentile_of(100, [100]) == {"percentile": 0, "rank": 1, "total_sessions": 1}
    assert percentile_of(50, [])["rank"] == 1
