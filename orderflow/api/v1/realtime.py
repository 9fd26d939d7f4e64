"""
WebSocket endpoint for live sessions.

Authenticate with ?token=<access token> or an Authorization: Bearer header.
Outbound events are drained from the session's broker queue; a ping is sent
when the queue stays idle for the configured interval.
"""

import asyncio
import contextlib
import json
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from orderflow.api.deps import Broker, Gateway, build_state_machine
from orderflow.config import get_settings
from orderflow.kernel.events.audit_recorder import AuditRecorder
from orderflow.kernel.identity.tokens import get_token_verifier
from orderflow.logging_config import actor_var, get_logger, request_id_var
from orderflow.realtime.broker import LiveSession
from orderflow.realtime.protocol import LiveProtocol, error_event

logger = get_logger(__name__)
router = APIRouter()


def _bearer(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


@router.websocket("/ws")
async def live_session(
    websocket: WebSocket,
    gateway: Gateway,
    broker: Broker,
    token: Optional[str] = Query(None),
):
    raw = _bearer(websocket, token)
    actor = None
    if raw:
        actor = get_token_verifier().resolve_actor(
            raw,
            ip_address=websocket.client.host if websocket.client else None,
            user_agent=websocket.headers.get("user-agent"),
        )
    if actor is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    request_id_var.set(f"ws-{uuid.uuid4().hex[:12]}")
    actor_var.set(actor.label)

    session = broker.connect(actor.user_id, actor.role)
    protocol = LiveProtocol(build_state_machine(gateway, broker), broker, AuditRecorder(gateway))
    send_lock = asyncio.Lock()

    async def send(payload: dict) -> None:
        async with send_lock:
            await websocket.send_json(payload)

    sender = asyncio.create_task(_drain(session, send, get_settings().realtime_ping_interval_seconds))
    try:
        await send({"event": "connected", "session_id": session.id})
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            message = _decode(frame)
            if message is None:
                await send(error_event("Messages must be JSON objects sent as text frames"))
                continue
            reply = await protocol.handle(session, actor, message)
            if reply is not None:
                await send(reply)
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        broker.disconnect(session)


def _decode(frame: dict) -> Optional[dict]:
    text = frame.get("text")
    if text is None:
        return None
    try:
        message = json.loads(text)
    except ValueError:
        return None
    return message if isinstance(message, dict) else None


async def _drain(session: LiveSession, send, ping_interval: float) -> None:
    while True:
        try:
            payload = await asyncio.wait_for(session.queue.get(), timeout=ping_interval)
        except asyncio.TimeoutError:
            payload = {"event": "ping"}
        try:
            await send(payload)
        except (WebSocketDisconnect, RuntimeError):
            return
        except Exception:
            logger.warning(
                "Live push failed, outbound stream stopped",
                exc_info=True,
                extra={"session_id": session.id},
            )
            return
