"""FastAPI routes mirroring the interview core operations."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from agents.types import ErrorInfo, OpResult
from api.auth import current_user, optional_user
from api.schemas import EndSessionBody, StartInterviewData, SubmitAnswerBody
from roadmap import Roadmap, RoadmapPlanner, RoadmapRequest
from services.orchestrator import InterviewOrchestrator, StartSessionRequest, SubmitAnswerRequest


ERROR_STATUS: Dict[str, int] = {
    "invalid-input": 422,
    "unauthorized": 401,
    "not-found": 404,
    "conflict": 409,
    "gone": 410,
    "precondition-failed": 412,
    "internal": 500,
}

router = APIRouter(prefix="/api/interview-sessions")
users_router = APIRouter(prefix="/api/users")
roadmap_router = APIRouter(prefix="/api/roadmaps")


def get_orchestrator(request: Request) -> InterviewOrchestrator:
    return request.app.state.orchestrator


def get_planner(request: Request) -> RoadmapPlanner:
    return request.app.state.planner


def unwrap(result: OpResult) -> Dict[str, Any]:
    """Return the success payload or raise the matching HTTP error."""

    if result.ok:
        return result.data or {}
    error = result.error or ErrorInfo(kind="internal", message="operation failed without an error")
    raise HTTPException(
        status_code=ERROR_STATUS.get(error.kind, 500),
        detail=error.model_dump(),
    )


@router.post("", status_code=201)
async def start_session(
    body: StartInterviewData,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    request = StartSessionRequest(user_id=user_id, **body.model_dump())
    return unwrap(await orchestrator.start_session(request))


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    user_id: Optional[str] = Depends(optional_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return unwrap(await orchestrator.get_session(session_id, user_id=user_id))


@router.post("/{session_id}/answers")
async def submit_answer(
    session_id: str,
    body: SubmitAnswerBody,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    request = SubmitAnswerRequest(session_id=session_id, **body.model_dump())
    return unwrap(await orchestrator.submit_answer(request, user_id=user_id))


@router.post("/{session_id}/pause")
async def pause_session(
    session_id: str,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return unwrap(await orchestrator.pause_session(session_id, user_id=user_id))


@router.post("/{session_id}/resume")
async def resume_session(
    session_id: str,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return unwrap(await orchestrator.resume_session(session_id, user_id=user_id))


@router.post("/{session_id}/end")
async def end_session(
    session_id: str,
    body: Optional[EndSessionBody] = None,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    reason = body.reason if body is not None else "user-ended"
    return unwrap(await orchestrator.end_session(session_id, user_id=user_id, reason=reason))


@router.post("/{session_id}/hint")
async def request_hint(
    session_id: str,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return unwrap(await orchestrator.request_hint(session_id, user_id=user_id))


@users_router.get("/{target_user}/analytics")
async def user_analytics(
    target_user: str,
    user_id: str = Depends(current_user),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    if target_user != user_id:
        raise HTTPException(status_code=401, detail={"kind": "unauthorized", "message": "analytics belong to another user"})
    return unwrap(await orchestrator.get_analytics(user_id))


@roadmap_router.post("", response_model=Roadmap)
def generate_roadmap(
    body: RoadmapRequest,
    user_id: str = Depends(current_user),
    planner: RoadmapPlanner = Depends(get_planner),
) -> Roadmap:
    if body.user_id != user_id:
        raise HTTPException(status_code=401, detail={"kind": "unauthorized", "message": "roadmap requested for another user"})
    try:
        return planner.generate(body)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"kind": "invalid-input", "message": str(exc)}) from exc


__all__ = ["ERROR_STATUS", "roadmap_router", "router", "unwrap", "users_router"]
