"""
Auth router — identity of the caller.

Sign-in happens on the client through the Firebase SDK; in mock mode the
token is simply ``mock-<email>``.
"""

from fastapi import APIRouter, Depends
from app.core.security import get_current_user, settings, MOCK_USERS
from app.utils.response import success_response

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    """Return current authenticated user profile."""
    return success_response(data=user)


@router.get("/available-users")
async def list_available_users():
    """
    Mock tokens that can be used locally.
    Empty outside mock mode.
    """
    if settings.AUTH_MODE != "mock":
        return success_response(data=[], message="Mock users are disabled")
    users = [
        {"email": u["email"], "name": u["name"], "role": u["role"], "mock_token": token}
        for token, u in MOCK_USERS.items()
    ]
    return success_response(data=users, message="Available mock users")
