"""
Messaging Service
Role channels (messages addressed to every admin or manager), participant
conversations, read receipts and realtime fan-out of new messages.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple
from bson import ObjectId
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError
from app.db import get_db
from app.services.employee_service import get_user_map
from app.utils.mongo import naive_utc, regex_filter, serialize, to_object_id
from app.utils.ws_manager import manager, role_room, user_room, conversation_room

logger = logging.getLogger(__name__)

MESSAGE_ROLES = ("admin", "manager", "employee")
READ_RECEIPT_CHANNELS = ("admin", "manager")
MAX_TEXT_LENGTH = 2000
EPOCH = datetime(1970, 1, 1)

NEW_MESSAGE_EVENT = "message:new"


def parse_before(before: Optional[str]) -> Optional[datetime]:
    """Accept an ISO timestamp or epoch milliseconds."""
    if before is None or str(before).strip() == "":
        return None
    value = str(before).strip()
    try:
        if value.lstrip("-").isdigit():
            return datetime.utcfromtimestamp(int(value) / 1000)
        return naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except (ValueError, OverflowError, OSError):
        raise HTTPException(status_code=400, detail="Invalid before timestamp")


def conversation_key(participant_ids: List[ObjectId]) -> str:
    return ":".join(sorted({str(p) for p in participant_ids}))


async def present_messages(messages: List[dict]) -> List[dict]:
    senders = await get_user_map(m.get("from") for m in messages)
    presented = []
    for message in messages:
        doc = serialize(message)
        sender = senders.get(str(message.get("from")))
        if sender:
            doc["from"] = sender
        presented.append(doc)
    return presented


def _channel_query(user: dict, to_role: str) -> Tuple[dict, bool]:
    """Visibility filter for a role channel and whether it counts as the caller's inbox."""
    me = user["_id"]
    role = user.get("role")
    if role == "admin" or (role == to_role and to_role != "employee"):
        return {"toRole": to_role}, True
    if role == "employee" and to_role == "employee":
        # Announcements to all employees plus what the caller sent
        return {"toRole": to_role, "$or": [{"conversationId": None}, {"from": me}]}, True
    return {"toRole": to_role, "from": me}, False


async def get_role_feed(
    user: dict,
    to_role: str = "admin",
    limit: int = 20,
    before: Optional[str] = None,
    search: Optional[str] = None,
    from_id: Optional[str] = None
) -> dict:
    if to_role not in MESSAGE_ROLES:
        raise HTTPException(status_code=400, detail="Invalid toRole")
    db = get_db()
    page_size = min(max(1, limit or 20), 100)

    query, is_inbox = _channel_query(user, to_role)
    before_at = parse_before(before)
    if before_at:
        query["createdAt"] = {"$lt": before_at}
    if from_id and "from" not in query:
        query["from"] = to_object_id(from_id, "sender")
    if search and search.strip():
        query["text"] = regex_filter(search)

    items = await db["messages"].find(query).sort("createdAt", -1).limit(page_size + 1).to_list(None)
    has_more = len(items) > page_size
    items = items[:page_size]

    unread_count = 0
    if is_inbox:
        receipt = await db["message_reads"].find_one({"user": user["_id"], "channelRole": to_role})
        last_read_at = receipt["lastReadAt"] if receipt else EPOCH
        unread_query, _ = _channel_query(user, to_role)
        unread_query["createdAt"] = {"$gt": last_read_at}
        if "from" not in unread_query:
            unread_query["from"] = {"$ne": user["_id"]}
        unread_count = await db["messages"].count_documents(unread_query)

    return {
        "data": await present_messages(items),
        "hasMore": has_more,
        "unreadCount": unread_count
    }


async def resolve_conversation(sender_id: ObjectId, participant_ids: List[ObjectId]) -> dict:
    """Find or create the conversation for exactly these participants."""
    db = get_db()
    members = sorted({sender_id, *participant_ids}, key=str)
    key = conversation_key(members)
    now = datetime.utcnow()

    conversation = await db["conversations"].find_one({"key": key})
    if conversation is None:
        doc = {
            "participants": members,
            "key": key,
            "lastMessageAt": now,
            "createdAt": now,
            "updatedAt": now
        }
        try:
            result = await db["conversations"].insert_one(doc)
            doc["_id"] = result.inserted_id
            conversation = doc
        except DuplicateKeyError:
            # Someone else created it between our read and insert
            conversation = await db["conversations"].find_one({"key": key})
    return conversation


async def send_message(
    sender: dict,
    to_role: str = "admin",
    text: Optional[str] = None,
    participants: Optional[List[Any]] = None,
    client_id: Optional[str] = None
) -> dict:
    """Validate, persist and fan out a message. Returns the presented message."""
    if text is not None and not isinstance(text, str):
        raise HTTPException(status_code=400, detail="Message text must be a string")
    text = (text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message text is required")
    if len(text) > MAX_TEXT_LENGTH:
        raise HTTPException(status_code=400, detail=f"Message text cannot exceed {MAX_TEXT_LENGTH} characters")
    if to_role not in MESSAGE_ROLES:
        raise HTTPException(status_code=400, detail="Invalid toRole")
    if participants is not None and not isinstance(participants, list):
        raise HTTPException(status_code=400, detail="Invalid participants list")
    if any(not ObjectId.is_valid(str(p)) for p in participants or []):
        raise HTTPException(status_code=400, detail="Invalid participants list")

    sender_id = sender["_id"]
    recipient_ids = [ObjectId(str(p)) for p in participants or [] if str(p) != str(sender_id)]

    if sender.get("role") not in ("admin", "manager"):
        if to_role != "employee":
            raise HTTPException(status_code=403, detail="Employees cannot broadcast to roles")
        if not recipient_ids:
            raise HTTPException(status_code=400, detail="Recipient required")

    db = get_db()
    if recipient_ids:
        found = await db["users"].count_documents({"_id": {"$in": recipient_ids}})
        if found != len(set(recipient_ids)):
            raise HTTPException(status_code=400, detail="Invalid participants list")

    conversation = None
    now = datetime.utcnow()
    if recipient_ids:
        conversation = await resolve_conversation(sender_id, recipient_ids)
        await db["conversations"].update_one(
            {"_id": conversation["_id"]},
            {"$set": {"lastMessageAt": now, "updatedAt": now}}
        )

    message = {
        "conversationId": conversation["_id"] if conversation else None,
        "from": sender_id,
        "toRole": to_role,
        "text": text,
        "createdAt": now,
        "updatedAt": now
    }
    if client_id:
        message["clientId"] = str(client_id)
    result = await db["messages"].insert_one(message)
    message["_id"] = result.inserted_id

    presented = (await present_messages([message]))[0]
    await broadcast_message(presented, conversation, recipient_ids)
    return presented


async def broadcast_message(message: dict, conversation: Optional[dict], recipient_ids: List[ObjectId]) -> int:
    rooms = [user_room(message["from"]["_id"] if isinstance(message["from"], dict) else message["from"])]
    # Direct messages between employees stay out of the shared employee room
    if not (conversation and message["toRole"] == "employee"):
        rooms.append(role_room(message["toRole"]))
    if conversation:
        rooms.append(conversation_room(conversation["_id"]))
        rooms.extend(user_room(pid) for pid in recipient_ids)
    try:
        return await manager.emit_to_rooms(rooms, NEW_MESSAGE_EVENT, message)
    except Exception as e:
        # Delivery is best effort; the message is already stored
        logger.warning(f"Realtime delivery of message {message.get('_id')} failed: {e}")
        return 0


async def mark_channel_read(user: dict, channel_role: Optional[str]) -> dict:
    if channel_role not in READ_RECEIPT_CHANNELS:
        raise HTTPException(status_code=400, detail="Invalid channelRole")
    db = get_db()
    now = datetime.utcnow()
    await db["message_reads"].update_one(
        {"user": user["_id"], "channelRole": channel_role},
        {"$set": {"lastReadAt": now}},
        upsert=True
    )
    return {"channelRole": channel_role, "lastReadAt": now.isoformat()}


async def get_conversation_for(user: dict, conversation_id: Any) -> dict:
    db = get_db()
    conversation = await db["conversations"].find_one({"_id": to_object_id(conversation_id, "conversation")})
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if str(user["_id"]) not in {str(p) for p in conversation.get("participants", [])}:
        raise HTTPException(status_code=403, detail="Access denied")
    return conversation


async def mark_conversation_read(user: dict, conversation_id: Any) -> dict:
    conversation = await get_conversation_for(user, conversation_id)
    db = get_db()
    now = datetime.utcnow()
    await db["conversation_reads"].update_one(
        {"user": user["_id"], "conversationId": conversation["_id"]},
        {"$set": {"lastReadAt": now}},
        upsert=True
    )
    return {"conversationId": str(conversation["_id"]), "lastReadAt": now.isoformat()}


async def get_conversation_messages(
    user: dict,
    conversation_id: Any,
    before: Optional[str] = None,
    limit: int = 50
) -> dict:
    conversation = await get_conversation_for(user, conversation_id)
    db = get_db()
    page_size = min(max(1, limit or 50), 200)

    query = {"conversationId": conversation["_id"]}
    before_at = parse_before(before)
    if before_at:
        query["createdAt"] = {"$lt": before_at}

    items_desc = await db["messages"].find(query).sort("createdAt", -1).limit(page_size + 1).to_list(None)
    has_more = len(items_desc) > page_size
    items = list(reversed(items_desc[:page_size]))

    participants = await get_user_map(conversation.get("participants", []))
    conversation_doc = serialize(conversation)
    conversation_doc["participants"] = [
        participants.get(str(p), {"_id": str(p)}) for p in conversation.get("participants", [])
    ]
    return {
        "data": await present_messages(items),
        "hasMore": has_more,
        "conversation": conversation_doc
    }


async def list_user_conversations(user_id: ObjectId) -> List[dict]:
    db = get_db()
    conversations = await db["conversations"].find({"participants": user_id}) \
        .sort("lastMessageAt", -1) \
        .to_list(None)
    if not conversations:
        return []

    conversation_ids = [c["_id"] for c in conversations]
    reads = await db["conversation_reads"].find({
        "user": user_id,
        "conversationId": {"$in": conversation_ids}
    }).to_list(None)
    read_map = {str(r["conversationId"]): r["lastReadAt"] for r in reads}

    participant_ids = {p for c in conversations for p in c.get("participants", [])}
    people = await get_user_map(participant_ids)

    result = []
    for conversation in conversations:
        last = await db["messages"].find({"conversationId": conversation["_id"]}) \
            .sort("createdAt", -1) \
            .limit(1) \
            .to_list(1)
        last_read_at = read_map.get(str(conversation["_id"]), EPOCH)
        unread = await db["messages"].count_documents({
            "conversationId": conversation["_id"],
            "createdAt": {"$gt": last_read_at},
            "from": {"$ne": user_id}
        })
        last_message = None
        if last:
            last_message = serialize({
                "_id": last[0]["_id"],
                "text": last[0]["text"],
                "toRole": last[0]["toRole"],
                "createdAt": last[0]["createdAt"],
                "from": last[0]["from"],
            })
        result.append({
            "_id": str(conversation["_id"]),
            "participants": [people.get(str(p), {"_id": str(p)}) for p in conversation.get("participants", [])],
            "lastMessageAt": serialize(conversation.get("lastMessageAt")),
            "lastMessage": last_message,
            "unreadCount": unread
        })
    return result
