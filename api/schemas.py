"""Pydantic schemas for the interview transport and REST API."""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from agents.types import ErrorInfo, InterviewType, OpResult, SessionConfig


InterviewRequestKind = Literal[
    "start_interview",
    "submit_answer",
    "get_session",
    "end_interview",
    "pause",
    "resume",
    "request_hint",
    "typing",
]
CollaborationRequestKind = Literal["join_room", "leave_room", "code_change", "cursor_move", "chat_message"]

INTERVIEW_REQUEST_KINDS = (
    "start_interview",
    "submit_answer",
    "get_session",
    "end_interview",
    "pause",
    "resume",
    "request_hint",
    "typing",
)
# kinds an unauthenticated socket may still call
READ_ONLY_KINDS = ("get_session",)
COLLABORATION_REQUEST_KINDS = ("join_room", "leave_room", "code_change", "cursor_move", "chat_message")

FrameId = Optional[Union[int, str]]


class RequestFrame(BaseModel):
    id: FrameId = None
    kind: str
    data: Dict[str, Any] = Field(default_factory=dict)


class AckFrame(BaseModel):
    type: Literal["ack"] = "ack"
    id: FrameId = None
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def from_result(cls, frame_id: FrameId, result: OpResult) -> "AckFrame":
        return cls(id=frame_id, success=result.ok, data=result.data if result.ok else None, error=result.error)


class EventFrame(BaseModel):
    type: Literal["event"] = "event"
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Interview namespace payloads
# ---------------------------------------------------------------------------
class StartInterviewData(BaseModel):
    resume_ref: str = Field(min_length=1)
    job_description_ref: Optional[str] = None
    interview_type: InterviewType
    config: SessionConfig = Field(default_factory=SessionConfig)


class SessionRef(BaseModel):
    session_id: str = Field(min_length=1)


class EndInterviewData(SessionRef):
    reason: str = "user-ended"


class TypingData(SessionRef):
    is_typing: bool = True


# ---------------------------------------------------------------------------
# Collaboration namespace payloads
# ---------------------------------------------------------------------------
class RoomRef(BaseModel):
    room_id: str = Field(min_length=1)
    name: Optional[str] = None


class CodeChangeData(RoomRef):
    code: str
    language: Optional[str] = None


class CursorMoveData(RoomRef):
    line: int = Field(ge=0)
    column: int = Field(ge=0)


class ChatMessageData(RoomRef):
    text: str = Field(min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# REST bodies
# ---------------------------------------------------------------------------
class SubmitAnswerBody(BaseModel):
    answer: str = ""
    time_spent_sec: float = Field(default=0.0, ge=0.0)
    media_ref: Optional[str] = None
    tests_passed: Optional[int] = Field(default=None, ge=0)
    tests_total: Optional[int] = Field(default=None, ge=0)


class EndSessionBody(BaseModel):
    reason: str = "user-ended"


__all__ = [
    "AckFrame",
    "ChatMessageData",
    "CodeChangeData",
    "COLLABORATION_REQUEST_KINDS",
    "CursorMoveData",
    "EndInterviewData",
    "EndSessionBody",
    "EventFrame",
    "INTERVIEW_REQUEST_KINDS",
    "READ_ONLY_KINDS",
    "RequestFrame",
    "RoomRef",
    "SessionRef",
    "StartInterviewData",
    "SubmitAnswerBody",
    "TypingData",
]
