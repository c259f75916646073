from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional
from app.schemas.message import MessageCreate, ChannelReadRequest
from app.services import message_service
from app.services.audit_service import audit_service, AuditAction, AuditTarget
from app.utils.auth import get_current_user
from app.utils.mongo import to_object_id
from app.utils.responses import success_response

router = APIRouter()


@router.get("/", response_model=dict)
@router.get("", response_model=dict, include_in_schema=False)
async def get_role_messages(
    toRole: str = "admin",
    limit: int = Query(20, ge=1),
    before: Optional[str] = None,
    search: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    current_user: dict = Depends(get_current_user)
):
    feed = await message_service.get_role_feed(
        current_user, to_role=toRole, limit=limit, before=before, search=search, from_id=from_
    )
    return success_response(feed["data"], hasMore=feed["hasMore"], unreadCount=feed["unreadCount"])


@router.post("/", response_model=dict, status_code=201)
@router.post("", response_model=dict, status_code=201, include_in_schema=False)
async def send_message(
    body: MessageCreate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    message = await message_service.send_message(
        current_user,
        to_role=body.toRole,
        text=body.text,
        participants=body.participants,
        client_id=body.clientId
    )
    await audit_service.log_request(
        request, current_user, AuditAction.CREATE, AuditTarget.MESSAGE, message["_id"],
        details={"toRole": message["toRole"], "conversationId": message.get("conversationId")}
    )
    return JSONResponse(status_code=201, content=success_response(message))


@router.post("/read", response_model=dict)
async def mark_channel_read(
    body: ChannelReadRequest,
    current_user: dict = Depends(get_current_user)
):
    receipt = await message_service.mark_channel_read(current_user, body.channelRole)
    return success_response(receipt)


@router.get("/user/{user_id}", response_model=dict)
async def get_user_conversations(
    user_id: str,
    current_user: dict = Depends(get_current_user)
):
    user_oid = to_object_id(user_id, "user")
    if current_user.get("role") != "admin" and user_oid != current_user["_id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    conversations = await message_service.list_user_conversations(user_oid)
    return success_response(conversations, count=len(conversations))


@router.post("/{conversation_id}/read", response_model=dict)
async def mark_conversation_read(
    conversation_id: str,
    current_user: dict = Depends(get_current_user)
):
    receipt = await message_service.mark_conversation_read(current_user, conversation_id)
    return success_response(receipt)


@router.get("/{conversation_id}", response_model=dict)
async def get_conversation(
    conversation_id: str,
    before: Optional[str] = None,
    limit: int = Query(50, ge=1),
    current_user: dict = Depends(get_current_user)
):
    result = await message_service.get_conversation_messages(
        current_user, conversation_id, before=before, limit=limit
    )
    return success_response(result["data"], hasMore=result["hasMore"], conversation=result["conversation"])
