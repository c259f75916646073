from fastapi import APIRouter, Depends
from app.utils.auth import get_current_user
from app.utils.permissions import ALL_PERMISSIONS, ROLES, ROLE_PERMISSIONS, effective_permissions
from app.utils.responses import success_response

router = APIRouter()


@router.get("/permissions", response_model=dict)
async def get_my_permissions(current_user: dict = Depends(get_current_user)):
    return success_response({
        "role": current_user.get("role"),
        "permissions": effective_permissions(current_user)
    })


@router.get("/roles", response_model=dict)
async def list_roles(current_user: dict = Depends(get_current_user)):
    return success_response({
        "roles": ROLES,
        "rolePermissions": ROLE_PERMISSIONS,
        "allPermissions": ALL_PERMISSIONS
    })
