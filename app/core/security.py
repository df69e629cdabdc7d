"""
Security module — Firebase ID token verification + Mock auth + Role guard.

Auth Flow:
1. Student/instructor signs in via Firebase → gets an ID token
2. Client sends the token as a Bearer header
3. FastAPI verifies it with the Firebase Admin SDK
4. Backend reads the user's role from the `users` table (by firebase_uid)
5. Backend injects: uid, user_id, role

The assignment services treat the role as opaque; only the routers use it
to pick which endpoints a caller may reach.
"""

import logging
import os

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from app.core.config import settings
from app.core.database import get_supabase

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer()

DEFAULT_ROLE = "student"

# ---------------------------------------------------------------------------
# Firebase initialization (lazy)
# ---------------------------------------------------------------------------
_firebase_app = None


def _init_firebase():
    global _firebase_app
    if _firebase_app is not None:
        return
    import firebase_admin
    from firebase_admin import credentials as fb_credentials

    cred_path = settings.FIREBASE_CREDENTIALS_PATH
    if os.path.exists(cred_path):
        cred = fb_credentials.Certificate(cred_path)
        _firebase_app = firebase_admin.initialize_app(cred)
    else:
        # Try default credentials
        _firebase_app = firebase_admin.initialize_app()


# ---------------------------------------------------------------------------
# Mock users (local development without Firebase)
# ---------------------------------------------------------------------------
MOCK_USERS = {
    "mock-instructor@example.com": {
        "uid": "instructor-uid",
        "user_id": "instructor-uid",
        "email": "instructor@example.com",
        "name": "Demo Instructor",
        "role": "instructor",
    },
    "mock-student@example.com": {
        "uid": "student-uid",
        "user_id": "student-uid",
        "email": "student@example.com",
        "name": "Demo Student",
        "role": "student",
    },
}


def _profile(uid: str, user_data: dict | None, email: str = "") -> dict:
    user_data = user_data or {}
    return {
        "uid": uid,
        "user_id": user_data.get("id", uid),
        "email": user_data.get("email", email),
        "name": user_data.get("name", ""),
        "role": user_data.get("role", DEFAULT_ROLE),
    }


# ---------------------------------------------------------------------------
# Token verification — the core auth function
# ---------------------------------------------------------------------------
async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> dict:
    """Validate the Bearer token and return the caller's identity dict."""
    token = credentials.credentials

    if settings.AUTH_MODE == "mock":
        return await _mock_auth(token)

    return await _firebase_auth(token)


async def _mock_auth(token: str) -> dict:
    """Mock mode: look up token in MOCK_USERS, then try the users table by email."""
    user = MOCK_USERS.get(token)
    if user:
        return user

    if token.startswith("mock-"):
        email = token[5:]
        try:
            db = get_supabase()
            result = (
                db.table("users")
                .select("*")
                .eq("email", email)
                .limit(1)
                .execute()
            )
            if result.data:
                user_data = result.data[0]
                return _profile(user_data.get("firebase_uid", user_data["id"]), user_data, email)
        except Exception:
            logger.warning("Mock auth lookup failed for %s", email, exc_info=True)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token.",
    )


async def _firebase_auth(token: str) -> dict:
    """Firebase mode: verify the ID token, then read the role from the users table."""
    _init_firebase()
    from firebase_admin import auth as fb_auth

    try:
        decoded = fb_auth.verify_id_token(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired Firebase token",
        )

    uid = decoded["uid"]

    user_data = None
    try:
        db = get_supabase()
        result = db.table("users").select("*").eq("firebase_uid", uid).limit(1).execute()
        if result.data:
            user_data = result.data[0]
    except Exception:
        # Profile store unreachable: fall back to token data with the default role
        logger.warning("Could not load profile for %s, using token claims only", uid, exc_info=True)

    return _profile(uid, user_data, decoded.get("email", ""))


# ---------------------------------------------------------------------------
# Role guard dependency
# ---------------------------------------------------------------------------
def require_role(allowed_roles: list[str]):
    """
    Usage:
        @router.get("/instructor-only")
        async def endpoint(user=Depends(require_role(["instructor", "admin"]))):
    """

    async def role_checker(
        user: dict = Depends(get_current_user),
    ) -> dict:
        if user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user['role']}' not authorized. Required: {allowed_roles}",
            )
        return user

    return role_checker
