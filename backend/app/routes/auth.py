from fastapi import APIRouter, Depends, HTTPException, status, Request
from app.services.auth_service import authenticate, verify_password, hash_password, create_access_token
from app.services.token_service import blacklist_token
from app.services.audit_service import audit_service, AuditAction, AuditTarget
from app.services.employee_service import present_employee
from app.schemas.auth import LoginRequest, ChangePasswordRequest
from app.db import get_db
from app.utils.auth import get_current_user, get_current_user_for_logout
from app.utils.permissions import effective_permissions
from app.utils.responses import success_response
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login")
async def login(credentials: LoginRequest, request: Request):
    identifier = credentials.login_identifier()
    if not identifier or not credentials.password:
        raise HTTPException(status_code=400, detail="Please provide username/email and password")

    user = await authenticate(identifier, credentials.password, request)

    token = create_access_token({"sub": str(user["_id"]), "role": user.get("role")})

    await audit_service.log_request(request, user, AuditAction.LOGIN, AuditTarget.USER, user["_id"])
    logger.info("User %s logged in", user["_id"])

    user_out = await present_employee(user)
    user_out["permissions"] = effective_permissions(user)
    return success_response(
        {"token": token, "user": user_out},
        message="Login successful"
    )


@router.post("/logout")
async def logout(request: Request, current_user: dict = Depends(get_current_user_for_logout)):
    payload = current_user.get("_token", {})
    await blacklist_token(payload, current_user["_id"], reason="logout")
    await audit_service.log_request(request, current_user, AuditAction.LOGOUT, AuditTarget.USER, current_user["_id"])
    return success_response(message="Logged out successfully")


@router.get("/verify")
@router.get("/me")
async def verify(current_user: dict = Depends(get_current_user)):
    user_out = await present_employee(current_user)
    user_out["permissions"] = effective_permissions(current_user)
    return success_response({"user": user_out})


@router.put("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    if not verify_password(body.currentPassword, current_user.get("password")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    db = get_db()
    await db["users"].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"password": hash_password(body.newPassword), "updatedAt": datetime.utcnow()}}
    )
    await audit_service.log_request(
        request, current_user, AuditAction.CHANGE_PASSWORD, AuditTarget.USER, current_user["_id"]
    )
    return success_response(message="Password changed successfully")
