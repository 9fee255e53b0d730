# routers/analytics.py
# Creator-facing reports. Guarded by the reporting API key or the admin token.

from typing import Annotated, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from deps.auth import require_client
from deps.engine import get_orchestrator
from engine.orchestrator import SessionOrchestrator

router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(require_client)])

Engine = Annotated[SessionOrchestrator, Depends(get_orchestrator)]


@router.get("/assessments/{assessment_id}/summary")
def analytics_summary(
    assessment_id: str,
    engine: Engine,
    tz: Optional[str] = Query(default=None, description="IANA zone for attempts_by_hour"),
):
    zone = None
    if tz:
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise HTTPException(status_code=422, detail="unknown time zone")
    return engine.analytics_summary(assessment_id, zone).model_dump(mode="json")


@router.get("/assessments/{assessment_id}/questions")
def question_analytics(assessment_id: str, engine: Engine):
    return engine.question_analytics(assessment_id).model_dump(mode="json")


@router.get("/assessments/{assessment_id}/heatmap")
def violation_heatmap(assessment_id: str, engine: Engine):
    return engine.violation_heatmap(assessment_id).model_dump(mode="json")


@router.get("/assessments/{assessment_id}/active")
def active_sessions(assessment_id: str, engine: Engine):
    return engine.active_sessions(assessment_id).model_dump(mode="json")


@router.get("/assessments/{assessment_id}/results")
def assessment_results(assessment_id: str, engine: Engine):
    return engine.assessment_results(assessment_id).model_dump(mode="json")


@router.get("/assessments/{assessment_id}/results.csv")
def export_results_csv(assessment_id: str, engine: Engine):
    result = engine.export_results_csv(assessment_id)
    if not result.ok:
        return result.model_dump(mode="json")
    return Response(
        content=result.data,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{assessment_id}-results.csv"'},
    )


@router.get("/sessions/{session_id}/violations")
def session_violations(session_id: str, engine: Engine):
    return engine.violations(session_id).model_dump(mode="json")


@router.get("/candidates/{user_id}/progression")
def candidate_progression(user_id: str, engine: Engine):
    return engine.candidate_progression(user_id).model_dump(mode="json")
