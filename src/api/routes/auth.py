"""Identity endpoint for the web client.

Endpoints:
    GET /auth/me - The signed-in user, or null with the login URL
"""

from typing import Any

from fastapi import APIRouter, Depends

from src.api.middleware.auth import CurrentUser, get_login_url, get_optional_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
async def get_me(user: CurrentUser | None = Depends(get_optional_user)) -> dict[str, Any]:
    """Return the signed-in user so the client can decide whether to redirect."""
    if user is None:
        return {"user": None, "login_url": get_login_url()}
    return {"user": user.to_dict()}
