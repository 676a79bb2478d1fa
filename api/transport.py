"""WebSocket adapter for the interview and collaboration namespaces.

Frames in both directions are JSON objects. Clients send
``{"id", "kind", "data"}``; the server answers each request with exactly one
``{"type": "ack", "id", "success", "data"|"error"}`` frame and pushes
``{"type": "event", "event", "data"}`` frames to every socket in a room. The
interview namespace uses the session id as its room name.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from agents.types import CoreError, OpResult
from services.orchestrator import InterviewOrchestrator, validation_message

from api.auth import IdentityProvider, connection_token
from api.schemas import (
    AckFrame,
    ChatMessageData,
    CodeChangeData,
    CursorMoveData,
    EndInterviewData,
    EventFrame,
    FrameId,
    READ_ONLY_KINDS,
    RequestFrame,
    RoomRef,
    SessionRef,
    TypingData,
)

logger = logging.getLogger(__name__)


class Connection:
    """One accepted socket and the rooms it belongs to."""

    def __init__(self, websocket: WebSocket, user_id: Optional[str] = None) -> None:
        self.conn_id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.user_id = user_id
        self.session_id: Optional[str] = None
        self.name: Optional[str] = None
        self.rooms: Set[str] = set()
        self.closed = False
        self._send_lock = asyncio.Lock()

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    async def send(self, frame: BaseModel) -> bool:
        if self.closed:
            return False
        async with self._send_lock:
            try:
                await self.websocket.send_json(frame.model_dump(mode="json", exclude_none=True))
            except (WebSocketDisconnect, RuntimeError) as exc:
                self.closed = True
                logger.info("socket %s closed while sending: %s", self.conn_id, exc)
                return False
        return True

    async def ack(self, frame_id: FrameId, result: OpResult) -> bool:
        return await self.send(AckFrame.from_result(frame_id, result))

    async def emit(self, event: str, data: Dict[str, Any]) -> bool:
        return await self.send(EventFrame(event=event, data=data))


class RoomHub:
    """Room membership for one namespace; doubles as the orchestrator's event sink."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        self._rooms: Dict[str, Dict[str, Connection]] = {}

    def join(self, conn: Connection, room: str) -> int:
        members = self._rooms.setdefault(room, {})
        members[conn.conn_id] = conn
        conn.rooms.add(room)
        return len(members)

    def leave(self, conn: Connection, room: str) -> bool:
        conn.rooms.discard(room)
        members = self._rooms.get(room)
        if not members or conn.conn_id not in members:
            return False
        del members[conn.conn_id]
        if not members:
            del self._rooms[room]
        return True

    def leave_all(self, conn: Connection) -> List[str]:
        left = [room for room in sorted(conn.rooms) if self.leave(conn, room)]
        conn.rooms.clear()
        return left

    def members(self, room: str) -> List[Connection]:
        return list(self._rooms.get(room, {}).values())

    def is_member(self, conn: Connection, room: str) -> bool:
        return conn.conn_id in self._rooms.get(room, {})

    async def broadcast(
        self,
        room: str,
        event: str,
        data: Dict[str, Any],
        *,
        exclude: Optional[Connection] = None,
    ) -> int:
        delivered = 0
        for conn in self.members(room):
            if exclude is not None and conn.conn_id == exclude.conn_id:
                continue
            if await conn.emit(event, data):
                delivered += 1
            else:
                self.leave(conn, room)
        return delivered

    async def publish(self, session_id: str, event: str, data: Dict[str, Any]) -> None:
        delivered = await self.broadcast(session_id, event, data)
        logger.debug("%s/%s pushed %s to %d socket(s)", self.namespace, session_id, event, delivered)


Handler = Callable[[Connection, FrameId, Dict[str, Any]], Awaitable[None]]


class Gateway:
    """Accept loop shared by both namespaces.

    Each frame is handled in its own task so a slow evaluation does not block
    the socket; ordering per session is enforced by the orchestrator's locks.
    """

    namespace = "base"
    read_only_kinds: Tuple[str, ...] = ()

    def __init__(self, identity: IdentityProvider, hub: Optional[RoomHub] = None) -> None:
        self.identity = identity
        self.hub = hub or RoomHub(self.namespace)
        self._tasks: Set[asyncio.Task[None]] = set()

    def handlers(self) -> Dict[str, Handler]:
        raise NotImplementedError

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        token = connection_token(websocket)
        conn = Connection(websocket, self.identity.verify(token) if token else None)
        logger.info("%s socket %s connected (user=%s)", self.namespace, conn.conn_id, conn.user_id or "-")
        try:
            while True:
                raw = await websocket.receive_text()
                task = asyncio.create_task(self.dispatch(conn, raw))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except WebSocketDisconnect:
            logger.info("%s socket %s disconnected", self.namespace, conn.conn_id)
        finally:
            conn.closed = True
            left = self.hub.leave_all(conn)
            await self.on_disconnect(conn, left)

    async def on_disconnect(self, conn: Connection, rooms: List[str]) -> None:
        return None

    async def dispatch(self, conn: Connection, raw: str) -> None:
        try:
            frame = RequestFrame.model_validate(json.loads(raw))
        except json.JSONDecodeError as exc:
            await conn.ack(None, OpResult.failure("invalid-input", f"frame is not valid JSON: {exc.msg}"))
            return
        except ValidationError as exc:
            await conn.ack(None, OpResult.failure("invalid-input", validation_message(exc)))
            return

        handler = self.handlers().get(frame.kind)
        if handler is None:
            await conn.ack(frame.id, OpResult.failure("invalid-input", f"unknown request kind {frame.kind!r}"))
            return
        if not conn.authenticated and frame.kind not in self.read_only_kinds:
            await conn.ack(frame.id, OpResult.failure("unauthorized", "authentication required"))
            return
        try:
            await handler(conn, frame.id, frame.data)
        except CoreError as exc:
            await conn.ack(frame.id, OpResult.failure(exc.kind, exc.message))
        except ValidationError as exc:
            await conn.ack(frame.id, OpResult.failure("invalid-input", validation_message(exc)))
        except Exception:  # noqa: BLE001
            logger.exception("%s request %s failed", self.namespace, frame.kind)
            await conn.ack(frame.id, OpResult.failure("internal", "request failed"))


class InterviewGateway(Gateway):
    namespace = "interview"
    read_only_kinds = READ_ONLY_KINDS

    def __init__(
        self,
        orchestrator: InterviewOrchestrator,
        identity: IdentityProvider,
        hub: Optional[RoomHub] = None,
    ) -> None:
        super().__init__(identity, hub)
        self.orchestrator = orchestrator
        orchestrator.set_event_sink(self.hub)

    def handlers(self) -> Dict[str, Handler]:
        return {
            "start_interview": self._start,
            "submit_answer": self._submit,
            "get_session": self._get,
            "end_interview": self._end,
            "pause": self._pause,
            "resume": self._resume,
            "request_hint": self._hint,
            "typing": self._typing,
        }

    def _reply(self, conn: Connection, frame_id: FrameId, *, follow: bool = True) -> Callable[[OpResult], Awaitable[None]]:
        """Ack callback; on success the socket joins the session room before any push."""

        async def reply(result: OpResult) -> None:
            if follow and result.ok and result.data and result.data.get("session_id"):
                sid = result.data["session_id"]
                self.hub.join(conn, sid)
                conn.session_id = sid
            await conn.ack(frame_id, result)

        return reply

    @staticmethod
    def _with_session(conn: Connection, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("session_id") or conn.session_id is None:
            return data
        return {**data, "session_id": conn.session_id}

    async def _start(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        request = {**data, "user_id": conn.user_id}
        await self.orchestrator.start_session(request, reply=self._reply(conn, frame_id))

    async def _submit(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        await self.orchestrator.submit_answer(
            self._with_session(conn, data),
            user_id=conn.user_id,
            reply=self._reply(conn, frame_id),
        )

    async def _get(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        ref = SessionRef.model_validate(self._with_session(conn, data))

        async def reply(result: OpResult) -> None:
            if result.ok and conn.authenticated:
                self.hub.join(conn, ref.session_id)
                conn.session_id = ref.session_id
            await conn.ack(frame_id, result)

        await self.orchestrator.get_session(ref.session_id, user_id=conn.user_id, reply=reply)

    async def _end(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = EndInterviewData.model_validate(self._with_session(conn, data))
        await self.orchestrator.end_session(
            req.session_id,
            user_id=conn.user_id,
            reason=req.reason,
            reply=self._reply(conn, frame_id),
        )

    async def _pause(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        ref = SessionRef.model_validate(self._with_session(conn, data))
        await self.orchestrator.pause_session(ref.session_id, user_id=conn.user_id, reply=self._reply(conn, frame_id))

    async def _resume(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        ref = SessionRef.model_validate(self._with_session(conn, data))
        await self.orchestrator.resume_session(ref.session_id, user_id=conn.user_id, reply=self._reply(conn, frame_id))

    async def _hint(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        ref = SessionRef.model_validate(self._with_session(conn, data))
        await self.orchestrator.request_hint(ref.session_id, user_id=conn.user_id, reply=self._reply(conn, frame_id))

    async def _typing(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = TypingData.model_validate(self._with_session(conn, data))
        if not self.hub.is_member(conn, req.session_id):
            raise CoreError("precondition-failed", "join the session before sending typing updates")
        await conn.ack(frame_id, OpResult.success({"session_id": req.session_id}))
        await self.hub.broadcast(
            req.session_id,
            "candidate_typing",
            {"session_id": req.session_id, "user_id": conn.user_id, "is_typing": req.is_typing},
            exclude=conn,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CollaborationGateway(Gateway):
    """Shared code editor rooms with cursors and chat."""

    namespace = "collaboration"
    read_only_kinds = ("join_room", "leave_room")

    def __init__(self, identity: IdentityProvider, hub: Optional[RoomHub] = None) -> None:
        super().__init__(identity, hub)
        self.snapshots: Dict[str, Dict[str, Any]] = {}

    def handlers(self) -> Dict[str, Handler]:
        return {
            "join_room": self._join,
            "leave_room": self._leave,
            "code_change": self._code_change,
            "cursor_move": self._cursor_move,
            "chat_message": self._chat,
        }

    @staticmethod
    def _who(conn: Connection) -> Dict[str, Any]:
        return {"conn_id": conn.conn_id, "user_id": conn.user_id, "name": conn.name or conn.user_id or "guest"}

    def _require_member(self, conn: Connection, room_id: str) -> None:
        if not self.hub.is_member(conn, room_id):
            raise CoreError("precondition-failed", f"not a member of room {room_id}")

    async def _join(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = RoomRef.model_validate(data)
        if req.name:
            conn.name = req.name
        self.hub.join(conn, req.room_id)
        members = [self._who(member) for member in self.hub.members(req.room_id)]
        snapshot = self.snapshots.get(req.room_id)
        await conn.ack(frame_id, OpResult.success({"room_id": req.room_id, "members": members, "snapshot": snapshot}))
        await self.hub.broadcast(req.room_id, "user_joined", {"room_id": req.room_id, **self._who(conn)}, exclude=conn)

    async def _leave(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = RoomRef.model_validate(data)
        self._require_member(conn, req.room_id)
        self.hub.leave(conn, req.room_id)
        await conn.ack(frame_id, OpResult.success({"room_id": req.room_id}))
        await self._announce_leave(conn, req.room_id)

    async def _announce_leave(self, conn: Connection, room_id: str) -> None:
        if not self.hub.members(room_id):
            self.snapshots.pop(room_id, None)
            return
        await self.hub.broadcast(room_id, "user_left", {"room_id": room_id, **self._who(conn)})

    async def on_disconnect(self, conn: Connection, rooms: List[str]) -> None:
        for room_id in rooms:
            await self._announce_leave(conn, room_id)

    async def _code_change(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = CodeChangeData.model_validate(data)
        self._require_member(conn, req.room_id)
        previous = self.snapshots.get(req.room_id) or {}
        snapshot = {
            "code": req.code,
            "language": req.language or previous.get("language"),
            "version": int(previous.get("version", 0)) + 1,
            "updated_by": conn.user_id,
            "updated_at": _now(),
        }
        self.snapshots[req.room_id] = snapshot
        await conn.ack(frame_id, OpResult.success({"room_id": req.room_id, "version": snapshot["version"]}))
        await self.hub.broadcast(req.room_id, "code_update", {"room_id": req.room_id, **snapshot}, exclude=conn)

    async def _cursor_move(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = CursorMoveData.model_validate(data)
        self._require_member(conn, req.room_id)
        await conn.ack(frame_id, OpResult.success({"room_id": req.room_id}))
        payload = {"room_id": req.room_id, "line": req.line, "column": req.column, **self._who(conn)}
        await self.hub.broadcast(req.room_id, "cursor_update", payload, exclude=conn)

    async def _chat(self, conn: Connection, frame_id: FrameId, data: Dict[str, Any]) -> None:
        req = ChatMessageData.model_validate(data)
        self._require_member(conn, req.room_id)
        message = {"room_id": req.room_id, "text": req.text, "sent_at": _now(), **self._who(conn)}
        await conn.ack(frame_id, OpResult.success({"room_id": req.room_id}))
        await self.hub.broadcast(req.room_id, "chat_update", message)


__all__ = [
    "CollaborationGateway",
    "Connection",
    "Gateway",
    "InterviewGateway",
    "RoomHub",
]
