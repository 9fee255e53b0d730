from datetime import UTC, datetime

from sqlalchemy.exc import OperationalError

from engine.ledger import lower_time_snapshot
from engine.results import ErrorCode
from engine.violations import ViolationDebouncer, ViolationRecorder
from models import AssessmentSession

USER = "cand-1"


def test_violations_append_in_order(orchestrator, clock):
    s = orchestrator.start(USER, "scenario").data
    assert orchestrator.report_violation(USER, s.id, "tab_hidden").data.recorded is True
    clock.advance(seconds=10)
    assert orchestrator.report_violation(USER, s.id, "fullscreen_exit").data.recorded is True

    res = orchestrator.violations(s.id)
    assert res.ok
    assert res.data.tab_switch_count == 2
    assert [(e.type, e.timestamp) for e in res.data.tab_switch_log] == [
        ("tab_hidden", "2024-03-01T09:00:00Z"),
        ("fullscreen_exit", "2024-03-01T09:00:10Z"),
    ]


def test_client_timestamp_is_kept(orchestrator):
    s = orchestrator.start(USER, "scenario").data
    ts = datetime(2024, 3, 1, 9, 0, 42, tzinfo=UTC)
    orchestrator.report_violation(USER, s.id, "tab_hidden", ts)
    assert orchestrator.violations(s.id).data.tab_switch_log[0].timestamp == "2024-03-01T09:00:42Z"


def test_unknown_violation_type(orchestrator):
    s = orchestrator.start(USER, "scenario").data
    res = orchestrator.report_violation(USER, s.id, "copy_paste")
    assert res.error.code == ErrorCode.INVALID_VIOLATION_TYPE


def test_violation_on_finished_session(orchestrator):
    s = orchestrator.start(USER, "scenario").data
    orchestrator.complete(USER, s.id)
    res = orchestrator.report_violation(USER, s.id, "tab_hidden")
    assert res.error.code == ErrorCode.SESSION_NOT_ACTIVE


class _BrokenDB:
    def __init__(self):
        self.rolled_back = False

    def execute(self, *args, **kwargs):
        raise OperationalError("UPDATE", {}, Exception("disk I/O error"))

    def commit(self):
        raise AssertionError("commit after failed write")

    def rollback(self):
        self.rolled_back = True


def test_store_failure_is_swallowed():
    db = _BrokenDB()
    session = AssessmentSession(
        id="9b2f3d4e-0000-4000-8000-000000000001",
        assessment_id="scenario",
        user_id=USER,
        status="in_progress",
        question_order=["sc-1"],
        time_remaining_seconds=600,
        tab_switch_count=0,
        tab_switch_log=[],
    )
    assert ViolationRecorder(db).append(session, "tab_hidden") is False
    assert db.rolled_back is True


def test_debouncer_window():
    now = [100.0]
    d = ViolationDebouncer(2.0, clock=lambda: now[0])
    assert d.should_report("tab_hidden") is True
    now[0] = 101.0
    assert d.should_report("tab_hidden") is False
    assert d.should_report("fullscreen_exit") is True
    now[0] = 102.5
    assert d.should_report("tab_hidden") is True


def test_snapshot_ignores_negative_and_finished(orchestrator, db):
    s = orchestrator.start(USER, "scenario").data
    lower_time_snapshot(db, s.id, -5)
    lower_time_snapshot(db, s.id, 120)
    db.commit()
    assert db.get(AssessmentSession, s.id).time_remaining_seconds == 120

    orchestrator.complete(USER, s.id)
    lower_time_snapshot(db, s.id, 10)
    db.commit()
    db.expire_all()
    assert db.get(AssessmentSession, s.id).time_remaining_seconds == 120


def test_appends_from_two_handles_keep_every_entry(orchestrator, clock):
    from db import SessionLocal
    from engine.state import SessionStateMachine

    s = orchestrator.start(USER, "scenario").data
    with SessionLocal() as db_a, SessionLocal() as db_b:
        row_a = SessionStateMachine(db_a, clock).load(s.id)
        row_b = SessionStateMachine(db_b, clock).load(s.id)
        assert ViolationRecorder(db_a, clock).append(row_a, "tab_hidden") is True
        assert ViolationRecorder(db_b, clock).append(row_b, "fullscreen_exit") is True

    res = orchestrator.violations(s.id).data
    assert res.tab_switch_count == 2
    assert [e.type for e in res.tab_switch_log] == ["tab_hidden", "fullscreen_exit"]
