from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from typing import Optional
from app.services import message_service
from app.services.audit_service import audit_service, AuditAction, AuditTarget
from app.utils.auth import resolve_token
from app.utils.ws_manager import manager, conversation_room
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401


async def _ack(connection_id: str, ack_id, payload: dict):
    if ack_id is None:
        return
    await manager.send(connection_id, {"event": "ack", "ackId": ack_id, "data": payload})


async def _handle_event(user: dict, connection_id: str, event: str, data: dict) -> Optional[dict]:
    """Dispatch one client frame. Returns the ack payload, if the event has one."""
    if event == "ping":
        await manager.send(connection_id, {"event": "pong", "data": {}})
        return None

    if event == "joinConversation":
        conversation = await message_service.get_conversation_for(user, data.get("conversationId"))
        manager.join(connection_id, conversation_room(conversation["_id"]))
        return {"ok": True}

    if event == "leaveConversation":
        if data.get("conversationId"):
            manager.leave(connection_id, conversation_room(data["conversationId"]))
        return {"ok": True}

    if event == "message:send":
        message = await message_service.send_message(
            user,
            to_role=data.get("toRole") or "admin",
            text=data.get("text"),
            participants=data.get("participants"),
            client_id=data.get("clientId")
        )
        await audit_service.log_event(
            AuditAction.CREATE,
            target=AuditTarget.MESSAGE,
            user_id=user["_id"],
            target_id=message["_id"],
            details={"toRole": message["toRole"], "via": "websocket"}
        )
        return {"ok": True, "data": message}

    return {"ok": False, "error": f"Unknown event: {event}"}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    try:
        if not token:
            raise HTTPException(status_code=401, detail="Access denied. No token provided.")
        user = await resolve_token(token)
    except HTTPException as e:
        logger.info(f"Rejected websocket handshake: {e.detail}")
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    connection_id = await manager.connect(user, websocket)
    if connection_id is None:
        return

    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict):
                continue
            event = frame.get("event")
            data = frame.get("data") if isinstance(frame.get("data"), dict) else {}
            ack_id = frame.get("ackId")
            try:
                result = await _handle_event(user, connection_id, event, data)
            except HTTPException as e:
                result = {"ok": False, "error": e.detail}
            if result is not None:
                await _ack(connection_id, ack_id, result)
    except WebSocketDisconnect:
        pass
    except ValueError as e:
        logger.warning(f"Malformed websocket frame from user {user['_id']}: {e}")
    finally:
        await manager.disconnect(connection_id)
