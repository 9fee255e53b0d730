# routers/live.py
"""
Live session view over a WebSocket.

One connection hosts one countdown. The server streams ticks, accepts
visibility events from the page, and completes the session with reason
"timeout" when the countdown reaches zero. The countdown is written back
to the session every few ticks and on disconnect, so reconnecting resumes
from where it stopped. Disconnecting never completes the session.

Client -> server:  {"type": "violation", "violation": "tab_hidden"}
                   {"type": "finish"}
Server -> client:  {"type": "state", ...} {"type": "tick", "remaining": n}
                   {"type": "completed", "data": {...}} {"type": "error", "error": {...}}
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from deps.engine import get_orchestrator
from engine.clock import SessionTimer
from engine.orchestrator import SessionOrchestrator
from engine.results import ActionResult
from engine.state import REASON_MANUAL, REASON_TIMEOUT
from engine.violations import VIOLATION_TYPES, ViolationDebouncer
from models import STATUS_IN_PROGRESS

logger = logging.getLogger("assessment-sessions.live")

router = APIRouter(tags=["live"])

TIMEOUT_COMPLETE_ATTEMPTS = 3
# countdown is written back to the session row this often
SNAPSHOT_EVERY_TICKS = 5


def _tick_seconds() -> float:
    return float(os.getenv("TIMER_TICK_SECONDS", "1"))


def _debounce_seconds() -> float:
    return float(os.getenv("VIOLATION_DEBOUNCE_SECONDS", "2"))


async def _complete(
    engine: SessionOrchestrator,
    user_id: str,
    session_id: str,
    reason: str,
    time_remaining_seconds: Optional[int] = None,
) -> ActionResult:
    attempts = TIMEOUT_COMPLETE_ATTEMPTS if reason == REASON_TIMEOUT else 1
    result = None
    for attempt in range(attempts):
        result = await run_in_threadpool(
            engine.complete, user_id, session_id, reason, time_remaining_seconds
        )
        if result.ok or not (result.error and result.error.context.get("retryable")):
            break
        await asyncio.sleep(0.5 * (attempt + 1))
    return result


@router.websocket("/sessions/{session_id}/live")
async def live_session(
    websocket: WebSocket,
    session_id: str,
    engine: SessionOrchestrator = Depends(get_orchestrator),
):
    user_id = (websocket.headers.get("x-user-id") or "").strip()
    if not user_id:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    resumed = await run_in_threadpool(engine.resume, user_id, session_id)
    if not resumed.ok:
        await websocket.send_json({"type": "error", "error": resumed.error.model_dump(mode="json")})
        await websocket.close()
        return

    session = resumed.data.session
    await websocket.send_json(
        {
            "type": "state",
            "status": session.status,
            "time_remaining_seconds": session.time_remaining_seconds,
        }
    )
    if session.status != STATUS_IN_PROGRESS:
        await websocket.close()
        return

    finished = asyncio.Event()
    completing = False

    async def finish(reason: str) -> None:
        nonlocal completing
        if completing:
            return
        completing = True
        timer.stop()
        remaining = timer.remaining if reason == REASON_MANUAL else None
        result = await _complete(engine, user_id, session_id, reason, remaining)
        if result.ok:
            await websocket.send_json({"type": "completed", "data": result.model_dump(mode="json")["data"]})
        elif reason == REASON_TIMEOUT:
            # time is up for the candidate either way; the stale sweep finishes the write
            logger.error("timeout completion failed for session=%s", session_id)
            await websocket.send_json({"type": "completed", "data": None, "pending": True})
        else:
            completing = False
            await websocket.send_json({"type": "error", "error": result.error.model_dump(mode="json")})
            return
        finished.set()

    async def on_tick(remaining: int) -> None:
        await websocket.send_json({"type": "tick", "remaining": remaining})
        if remaining and remaining % SNAPSHOT_EVERY_TICKS == 0:
            await run_in_threadpool(engine.save_remaining, user_id, session_id, remaining)

    async def on_expire() -> None:
        await finish(REASON_TIMEOUT)

    timer = SessionTimer(
        session.time_remaining_seconds, on_expire, on_tick=on_tick, interval=_tick_seconds()
    )
    debouncer = ViolationDebouncer(_debounce_seconds())

    async def receive_loop() -> None:
        while True:
            msg = await websocket.receive_json()
            kind = msg.get("type") if isinstance(msg, dict) else None
            if kind == "violation":
                vtype = msg.get("violation")
                if vtype in VIOLATION_TYPES and debouncer.should_report(vtype):
                    await run_in_threadpool(engine.report_violation, user_id, session_id, vtype)
            elif kind == "finish":
                await finish(REASON_MANUAL)

    timer_task = timer.start()
    recv_task = asyncio.create_task(receive_loop())
    done_task = asyncio.create_task(finished.wait())
    try:
        await asyncio.wait({timer_task, recv_task, done_task}, return_when=asyncio.FIRST_COMPLETED)
        if timer_task.done() and not finished.is_set() and not timer_task.cancelled():
            # expiry may still be sending; let it land
            await asyncio.wait({recv_task, done_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        timer.cancel()
        for task in (recv_task, done_task):
            task.cancel()
        for task in (timer_task, recv_task):
            if task.done() and not task.cancelled():
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("live view for session=%s ended: %r", session_id, exc)
        if not completing:
            # the session stays resumable, minus the seconds already counted down
            await run_in_threadpool(engine.save_remaining, user_id, session_id, timer.remaining)

    if finished.is_set():
        await websocket.close()
