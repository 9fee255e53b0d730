from __future__ import annotations

import os

from fastapi import APIRouter, Depends, Request

from bank import reload_bank
from deps.engine import get_orchestrator
from engine.orchestrator import SessionOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


def _admin_error(request: Request) -> str | None:
    expected = os.getenv("ADMIN_TOKEN") or ""
    provided = request.headers.get("x-admin-token")

    if not expected:
        return "ADMIN_TOKEN not configured on server."
    if provided != expected:
        return "unauthorized"
    return None


@router.post("/reload")
def reload_assessments(request: Request):
    err = _admin_error(request)
    if err:
        return {"ok": False, "error": err}

    n = reload_bank()
    return {"ok": True, "count": n}


@router.post("/expire-stale")
def expire_stale_sessions(
    request: Request, engine: SessionOrchestrator = Depends(get_orchestrator)
):
    """Finalize abandoned sessions whose time limit has passed."""
    err = _admin_error(request)
    if err:
        return {"ok": False, "error": err}
    return engine.expire_stale().model_dump(mode="json")
