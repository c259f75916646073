from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from app.db import get_db
from app.services.auth_service import decode_access_token
from app.services.token_service import is_token_blacklisted
from app.utils.permissions import has_permission
from bson import ObjectId
import logging

# ---------------------------------------------------------------------------
# Logger setup – using module namespace helps identify origin in aggregated logs
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

# Missing headers are reported as 401 by get_current_user rather than HTTPBearer's default
security = HTTPBearer(auto_error=False)


def _credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_token(token: str, require_active: bool = True) -> dict:
    """Decode a bearer token and load its employee.

    Shared by the HTTP dependencies and the websocket handshake.
    """
    credentials_exception = _credentials_exception()

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub") or payload.get("userId")
    token_id = payload.get("jti")
    logger.debug("Validating token with jti: %s", token_id)

    if not user_id or not token_id or not ObjectId.is_valid(str(user_id)):
        raise credentials_exception

    if await is_token_blacklisted(token_id):
        logger.debug("Token %s is blacklisted", token_id)
        raise credentials_exception

    db = get_db()
    user = await db["users"].find_one({"_id": ObjectId(str(user_id))})
    if user is None:
        raise credentials_exception

    if require_active and not user.get("isActive", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated"
        )

    user["_token"] = payload
    return user


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    if credentials is None or not credentials.credentials:
        raise _credentials_exception("Access denied. No token provided.")
    return await resolve_token(credentials.credentials)


async def get_current_user_for_logout(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    """
    Identical to get_current_user, but omits the isActive check.
    This allows a user who has just been deactivated to still have their token blacklisted.
    """
    if credentials is None or not credentials.credentials:
        raise _credentials_exception("Access denied. No token provided.")
    return await resolve_token(credentials.credentials, require_active=False)


def verify_role(required_roles: list):
    def role_checker(current_user: dict = Depends(get_current_user)):
        if current_user.get("role") not in required_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user
    return role_checker


def require_permission(*permissions: str):
    def permission_checker(current_user: dict = Depends(get_current_user)):
        missing = [p for p in permissions if not has_permission(current_user, p)]
        if missing:
            logger.info("User %s denied, missing %s", current_user.get("_id"), ", ".join(missing))
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user
    return permission_checker


# Role-specific dependencies
require_admin = verify_role(["admin"])
require_manager_or_admin = verify_role(["manager", "admin"])
