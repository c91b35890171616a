"""HTTP API for feedback capture, budget status and agent health."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from feedback.log import FeedbackLog, FeedbackResult
from monitoring.health import get_agent_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["api-v1"])

FEEDBACK_TYPES = ("thumbs", "stars", "multi")


class ThumbsFeedbackRequest(BaseModel):
    thumbs_up: bool = Field(..., alias="thumbsUp")
    comment: Optional[str] = None


class StarsFeedbackRequest(BaseModel):
    stars: int
    comment: Optional[str] = Field(default=None, alias="starComment")


class MultiFeedbackRequest(BaseModel):
    ratings: Dict[str, int] = Field(..., min_length=1)
    comment: Optional[str] = Field(default=None, alias="multiComment")


def _feedback_log(request: Request) -> FeedbackLog:
    return request.app.state.feedback_log


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


# ── Feedback ──────────────────────────────────────────────────────────

@router.post("/feedback")
async def post_feedback(request: Request):
    """Record end-user feedback on a trace.

    Body: ``traceId``, ``type`` (thumbs | stars | multi), optional ``userId``
    and ``metadata``, plus the fields of the chosen type.
    """
    try:
        payload = await request.json()
    except ValueError as exc:
        raise _bad_request("Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise _bad_request("Request body must be a JSON object")

    trace_id = payload.get("traceId")
    if not isinstance(trace_id, str) or not trace_id.strip():
        raise _bad_request("traceId is required")

    feedback_type = payload.get("type")
    if feedback_type not in FEEDBACK_TYPES:
        raise _bad_request(f"Unknown feedback type: {feedback_type}")

    user_id = payload.get("userId")
    metadata = payload.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise _bad_request("metadata must be an object")

    log = _feedback_log(request)
    try:
        if feedback_type == "thumbs":
            body = ThumbsFeedbackRequest.model_validate(payload)
            result = await log.log_thumbs_feedback(
                trace_id, body.thumbs_up, comment=body.comment, user_id=user_id, metadata=metadata
            )
        elif feedback_type == "stars":
            body = StarsFeedbackRequest.model_validate(payload)
            if not 1 <= body.stars <= 5:
                raise _bad_request("stars must be between 1 and 5")
            result = await log.log_star_rating(
                trace_id, body.stars, comment=body.comment, user_id=user_id, metadata=metadata
            )
        else:
            body = MultiFeedbackRequest.model_validate(payload)
            result = await log.log_multi_dimensional_feedback(
                trace_id, body.ratings, comment=body.comment, user_id=user_id, metadata=metadata
            )
    except (ValidationError, ValueError) as exc:
        raise _bad_request(str(exc)) from exc

    return _feedback_response(result)


def _feedback_response(result: FeedbackResult):
    if not result.success:
        logger.error(f"Feedback API error for trace {result.trace_id}: {result.error}")
        return JSONResponse(status_code=500, content=result.model_dump())
    return result.model_dump()


# ── Budgets ───────────────────────────────────────────────────────────

@router.get("/budgets")
async def list_budgets(request: Request) -> Dict[str, Any]:
    budgets = request.app.state.budgets
    return {"budgets": {name: status.to_dict() for name, status in budgets.get_all_budgets().items()}}


@router.get("/budgets/{agent_name}")
async def get_budget(agent_name: str, request: Request) -> Dict[str, Any]:
    status = request.app.state.budgets.get_budget_status(agent_name)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No budget set for {agent_name}")
    healthy, alerts = request.app.state.budgets.check_agent_alerts(agent_name)
    return {**status.to_dict(), "healthy": healthy, "alerts": alerts}


# ── Health ────────────────────────────────────────────────────────────

@router.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    settings = request.app.state.settings
    sink = request.app.state.feedback_log.sink
    return {
        "status": "ok",
        "tracing": {
            "enabled": sink.enabled,
            "sink": sink.name,
            "configured": settings.is_configured,
            "project": settings.project_name,
            "workspace": settings.workspace,
            "environment": settings.environment_tag,
        },
    }


@router.get("/agents/{agent_name}/health")
async def agent_health(
    agent_name: str,
    request: Request,
    hours: int = Query(24, ge=1, le=24 * 31),
) -> Dict[str, Any]:
    repository = request.app.state.repository
    if repository is None:
        raise HTTPException(status_code=404, detail="Agent health needs a local trace database")
    return get_agent_health(repository, agent_name, hours=hours).to_dict()
