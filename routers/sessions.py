# routers/sessions.py
# Candidate-facing session endpoints. Expected failures come back as
# HTTP 200 with {"ok": false, "error": {...}} so the UI can explain them.

from typing import Annotated

from fastapi import APIRouter, Depends

from deps.auth import require_user
from deps.engine import get_orchestrator
from engine.orchestrator import SessionOrchestrator
from schemas.sessions import AnswerSubmit, CompleteRequest, StartSessionRequest, ViolationReport

router = APIRouter(prefix="/sessions", tags=["sessions"])

UserId = Annotated[str, Depends(require_user)]
Engine = Annotated[SessionOrchestrator, Depends(get_orchestrator)]


@router.post("")
def start_session(req: StartSessionRequest, user_id: UserId, engine: Engine):
    return engine.start(user_id, req.assessment_id, req.access_code).model_dump(mode="json")


@router.get("/{session_id}")
def resume_session(session_id: str, user_id: UserId, engine: Engine):
    return engine.resume(user_id, session_id).model_dump(mode="json")


@router.get("/{session_id}/questions")
def session_questions(session_id: str, user_id: UserId, engine: Engine):
    return engine.questions(user_id, session_id).model_dump(mode="json")


@router.get("/{session_id}/answers")
def session_answers(session_id: str, user_id: UserId, engine: Engine):
    return engine.get_answers(user_id, session_id).model_dump(mode="json")


@router.put("/{session_id}/answers")
def submit_answer(session_id: str, req: AnswerSubmit, user_id: UserId, engine: Engine):
    result = engine.record_answer(
        user_id,
        session_id,
        req.question_id,
        req.selected_index,
        time_spent_seconds=req.time_spent_seconds,
        time_remaining_seconds=req.time_remaining_seconds,
    )
    return result.model_dump(mode="json")


@router.post("/{session_id}/violations")
def report_violation(session_id: str, req: ViolationReport, user_id: UserId, engine: Engine):
    return engine.report_violation(user_id, session_id, req.type, req.timestamp).model_dump(
        mode="json"
    )


@router.post("/{session_id}/complete")
def complete_session(session_id: str, req: CompleteRequest, user_id: UserId, engine: Engine):
    result = engine.complete(
        user_id, session_id, req.reason, time_remaining_seconds=req.time_remaining_seconds
    )
    return result.model_dump(mode="json")


@router.get("/{session_id}/results")
def session_results(session_id: str, user_id: UserId, engine: Engine):
    return engine.results(user_id, session_id).model_dump(mode="json")


@router.get("/{session_id}/percentile")
def session_percentile(session_id: str, user_id: UserId, engine: Engine):
    return engine.percentile(user_id, session_id).model_dump(mode="json")
