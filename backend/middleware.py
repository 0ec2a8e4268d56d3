from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token, check_rbac
from models import UserRole
from database import database

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload or not payload.get("user_id"):
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication and an ACTIVE account."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    db = database.get_db()
    account = await db.users.find_one(
        {"user_id": user["user_id"]},
        {"_id": 0, "status": 1, "role": 1}
    )
    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    if account.get("status", "ACTIVE") != "ACTIVE":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active"
        )

    # role on the stored account wins over a stale token claim
    user["role"] = account.get("role") or user.get("role") or UserRole.USER.value
    return user

async def require_role(request: Request, required_role: UserRole) -> dict:
    """Require specific role."""
    user = await require_auth(request)

    if not check_rbac(user.get("role"), required_role):
        logger.warning(f"User {user.get('user_id')} denied {request.url.path}: needs {required_role.value}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )

    return user

async def admin_route_guard(request: Request) -> dict:
    """Guard for admin routes."""
    return await require_role(request, UserRole.ADMIN)

async def super_admin_route_guard(request: Request) -> dict:
    """Guard for super admin routes."""
    return await require_role(request, UserRole.SUPER_ADMIN)
