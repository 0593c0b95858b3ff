"""Limit, history and submission endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from taskquota.dashboard.models import SubmitTaskBody
from taskquota.dashboard.routers._deps import get_engine
from taskquota.errors import RemoteError, ValidationError

router = APIRouter()


# ------------------------------------------------------------------
# GET /api/limits/{task_id}?user_id=: current stats and decision
# ------------------------------------------------------------------


@router.get("/api/limits/{task_id}")
async def get_limits(
    task_id: int,
    user_id: int = Query(..., gt=0),
    engine=Depends(get_engine),
):
    try:
        stats, decision = await engine.check(task_id, user_id)
    except ValidationError as exc:
        raise HTTPException(422, str(exc)) from exc
    limits = engine.limits_for(task_id)
    return {
        "stats": stats.to_dict(),
        "limits": {
            "hourly_limit": limits.hourly_limit,
            "daily_limit": limits.daily_limit,
            "cooldown_duration_ms": limits.cooldown_duration_ms,
        },
        "decision": decision.to_dict(),
    }


# ------------------------------------------------------------------
# GET /api/completions/{task_id}?user_id=: retained history, newest first
# ------------------------------------------------------------------


@router.get("/api/completions/{task_id}")
async def get_completions(
    task_id: int,
    user_id: int = Query(..., gt=0),
    engine=Depends(get_engine),
):
    records = await engine.log.query(task_id, user_id)
    records.sort(key=lambda r: r.completed_at, reverse=True)
    return {"completions": [r.to_dict() for r in records], "count": len(records)}


# ------------------------------------------------------------------
# POST /api/tasks/{task_id}/submit: limit check, remote submit, then record
# ------------------------------------------------------------------


@router.post("/api/tasks/{task_id}/submit")
async def submit_task(task_id: int, body: SubmitTaskBody, engine=Depends(get_engine)):
    if engine.submitter is None:
        raise HTTPException(503, "Remote task API is not configured")

    user_id = body.user_id
    if user_id is None:
        user_id = await engine.submitter.current_user_id()
    if user_id:
        try:
            _, decision = await engine.check(task_id, user_id)
        except ValidationError as exc:
            raise HTTPException(422, str(exc)) from exc
        if not decision.can_complete:
            raise HTTPException(429, decision.limit_message or "Task is not available yet")

    try:
        result = await engine.submitter.submit(
            task_id, body.screenshot_url, user_id=user_id,
        )
    except ValidationError as exc:
        raise HTTPException(422, str(exc)) from exc
    except RemoteError as exc:
        raise HTTPException(502, exc.message) from exc
    return result
