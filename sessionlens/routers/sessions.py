"""Read-only session reconstruction endpoints."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar, Union

from fastapi import APIRouter, Depends, HTTPException, Request

from sessionlens.models import (
    ConversationGroup,
    SessionContext,
    SessionDetail,
    SessionMetrics,
    SessionNotFound,
    WaterfallData,
)
from sessionlens.services.session_service import InvalidSessionReference, SessionService

T = TypeVar("T")

sessions_router = APIRouter(prefix="/api/projects/{project_id}/sessions", tags=["sessions"])


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


async def _resolve(
    project_id: str,
    session_id: str,
    fetch: Callable[[str, str], Awaitable[Union[T, SessionNotFound]]],
) -> T:
    try:
        result = await fetch(project_id, session_id)
    except InvalidSessionReference as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(result, SessionNotFound):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return result


@sessions_router.get("/{session_id}", response_model=SessionDetail)
async def get_session_detail(
    project_id: str,
    session_id: str,
    service: SessionService = Depends(get_session_service),
):
    """Full reconstruction: chunks with embedded subagents, metrics, context and phases."""
    return await _resolve(project_id, session_id, service.get_detail)


@sessions_router.get("/{session_id}/groups", response_model=list[ConversationGroup])
async def get_session_groups(
    project_id: str,
    session_id: str,
    service: SessionService = Depends(get_session_service),
):
    return await _resolve(project_id, session_id, service.get_groups)


@sessions_router.get("/{session_id}/metrics", response_model=SessionMetrics)
async def get_session_metrics(
    project_id: str,
    session_id: str,
    service: SessionService = Depends(get_session_service),
):
    return await _resolve(project_id, session_id, service.get_metrics)


@sessions_router.get("/{session_id}/waterfall", response_model=WaterfallData)
async def get_session_waterfall(
    project_id: str,
    session_id: str,
    service: SessionService = Depends(get_session_service),
):
    return await _resolve(project_id, session_id, service.get_waterfall)


@sessions_router.get("/{session_id}/context", response_model=SessionContext)
async def get_session_context(
    project_id: str,
    session_id: str,
    service: SessionService = Depends(get_session_service),
):
    """Per-turn context stats plus session-wide phase info."""
    return await _resolve(project_id, session_id, service.get_context)
