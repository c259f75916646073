"""
Access-token revocation.

A logged-out token stays valid as a JWT until `exp`, so its `jti` is parked
in `blacklisted_tokens` until then. Mongo's TTL index and the cleanup task
both drop rows once the token would have expired anyway.
"""

from datetime import datetime
from typing import Optional
from bson import ObjectId
from app.db import get_db
import logging

logger = logging.getLogger(__name__)

COLLECTION = "blacklisted_tokens"


def _collection():
    return get_db()[COLLECTION]


async def blacklist_token(payload: dict, user_id: Optional[ObjectId] = None, reason: str = "logout") -> Optional[str]:
    """Revoke the token described by a decoded JWT payload."""
    jti = payload.get("jti")
    if not jti:
        # Tokens without an id cannot be revoked individually
        logger.warning("Refusing to blacklist a token without jti (user %s)", user_id)
        return None

    expires_at = datetime.utcfromtimestamp(payload["exp"]) if payload.get("exp") else datetime.utcnow()
    result = await _collection().update_one(
        {"tokenId": jti},
        {"$setOnInsert": {
            "tokenId": jti,
            "user": user_id,
            "reason": reason,
            "expiresAt": expires_at,
            "createdAt": datetime.utcnow(),
        }},
        upsert=True
    )
    logger.info("Token revoked for user %s (%s)", user_id, reason)
    return str(result.upserted_id) if result.upserted_id else None


async def is_token_blacklisted(jti: Optional[str]) -> bool:
    if not jti:
        return False
    row = await _collection().find_one({"tokenId": jti, "expiresAt": {"$gt": datetime.utcnow()}})
    return row is not None


async def cleanup_expired_tokens() -> int:
    result = await _collection().delete_many({"expiresAt": {"$lte": datetime.utcnow()}})
    return result.deleted_count
