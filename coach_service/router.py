"""
POSECOACH Coach Service Router

Endpoints for the guided pose workout. The browser runs the camera and the
pose detector and streams landmarks over the session WebSocket; this service
answers with phase snapshots, per-joint feedback and speech requests.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from core.websocket import connection_manager, WebSocketMessage, MessageType

from .models import (
    AnnouncementQueue,
    AsyncioPhaseScheduler,
    CoachingSessionManager,
    EngineStatus,
    SessionSnapshot,
    POSE_LANDMARK_INDEX,
    frame_from_dicts,
    get_session_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_manager() -> CoachingSessionManager:
    """Session manager dependency (overridable in tests)."""
    return get_session_manager()


class WebSocketAnnouncementSink:
    """Hands announcements to the client, which does the actual speech."""

    def __init__(self, client_id: str):
        self.client_id = client_id

    async def deliver(self, text: str) -> None:
        await connection_manager.send_to_client(
            self.client_id,
            WebSocketMessage(type=MessageType.ANNOUNCE, payload={"text": text})
        )

    async def silence(self) -> None:
        await connection_manager.send_to_client(
            self.client_id,
            WebSocketMessage(type=MessageType.SILENCE)
        )


# ============= REST Endpoints =============

@router.get("/configuration")
async def get_configuration(manager: CoachingSessionManager = Depends(get_manager)):
    """Summary of the loaded workout."""
    if manager.configuration is None:
        raise HTTPException(
            status_code=503,
            detail=manager.configuration_error or "Exercise configuration not loaded"
        )
    return manager.configuration.summary()


@router.get("/landmarks")
async def get_landmarks():
    """Landmark names and the frame index each one is expected at."""
    return {"landmarks": POSE_LANDMARK_INDEX, "count": len(POSE_LANDMARK_INDEX)}


@router.get("/sessions")
async def list_sessions(manager: CoachingSessionManager = Depends(get_manager)):
    """Active coaching sessions."""
    sessions = manager.list_sessions()
    return {"sessions": sessions, "total": len(sessions)}


@router.get("/sessions/{session_id}")
async def get_session_snapshot(session_id: str, manager: CoachingSessionManager = Depends(get_manager)):
    """Current snapshot of one session."""
    session = manager.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.snapshot().to_dict()


# ============= WebSocket Endpoints =============

@router.websocket("/ws/session")
async def coaching_session_stream(websocket: WebSocket, manager: CoachingSessionManager = Depends(get_manager)):
    """
    Live coaching session.

    Client messages: ping, engine_status {status}, start, reset,
    landmarks {landmarks, frame_width, frame_height}.
    Server messages: session_created, snapshot, announce, silence, fault,
    error, pong.
    """
    client_id = f"coach_{uuid.uuid4().hex[:8]}"
    try:
        await connection_manager.connect(websocket, client_id)
    except ConnectionError:
        return

    loop = asyncio.get_running_loop()
    background: Set[asyncio.Task] = set()

    def send_later(message: WebSocketMessage):
        task = loop.create_task(connection_manager.send_to_client(client_id, message))
        background.add(task)
        task.add_done_callback(background.discard)

    def push_snapshot(snapshot: SessionSnapshot):
        send_later(WebSocketMessage(type=MessageType.SNAPSHOT, payload=snapshot.to_dict()))

    def push_fault(status: EngineStatus):
        send_later(WebSocketMessage(type=MessageType.FAULT, payload={"status": status.value}))

    announcer = AnnouncementQueue(WebSocketAnnouncementSink(client_id))
    announcer.start()
    session = manager.create_session(
        announcer,
        AsyncioPhaseScheduler(loop),
        on_change=push_snapshot,
        on_fault=push_fault,
    )

    async def send(message_type: MessageType, payload: Any = None):
        await connection_manager.send_to_client(client_id, WebSocketMessage(type=message_type, payload=payload))

    async def handle(_client_id: str, message: WebSocketMessage):
        payload: Dict[str, Any] = message.payload if isinstance(message.payload, dict) else {}

        if message.type == MessageType.ENGINE_STATUS.value:
            session.apply_engine_status(EngineStatus(payload.get("status")))
        elif message.type == MessageType.START.value:
            if not session.start():
                await send(MessageType.ERROR, {"error": f"Cannot start from {session.phase.value}"})
        elif message.type == MessageType.RESET.value:
            session.reset()
        elif message.type == MessageType.LANDMARKS.value:
            frame = frame_from_dicts(payload.get("landmarks"))
            snapshot = session.process_frame(frame, payload.get("frame_width"), payload.get("frame_height"))
            await send(MessageType.SNAPSHOT, snapshot.to_dict())
            return
        else:
            await send(MessageType.ERROR, {"error": f"Unknown message type: {message.type}"})
            return

        await send(MessageType.SNAPSHOT, session.snapshot().to_dict())

    try:
        await send(MessageType.SESSION_CREATED, {"session_id": session.session_id})
        await send(MessageType.SNAPSHOT, session.snapshot().to_dict())

        while True:
            data = await websocket.receive_text()
            await connection_manager.handle_message(client_id, data, handle)

    except WebSocketDisconnect:
        logger.info(f"Client {client_id} left session {session.session_id}")

    finally:
        manager.cleanup_session(session.session_id)
        await announcer.close()
        await connection_manager.disconnect(client_id)
