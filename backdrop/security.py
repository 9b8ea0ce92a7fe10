"""
Security module for the portrait backdrop service.

Provides:
- Password login backed by a signed session cookie
- A dependency that guards the upload, preview and save endpoints
"""

import secrets

from fastapi import APIRouter, HTTPException, Request
from starlette.middleware.sessions import SessionMiddleware

from .config import Settings
from .models import LoginRequest

router = APIRouter(tags=["Auth"])


def install_sessions(app, settings: Settings) -> None:
    """
    Attach the cookie session middleware.

    Cookies are HTTPS-only unless DEV_MODE is set.
    """
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        session_cookie="backdrop_session",
        max_age=settings.SESSION_MAX_AGE_S,
        same_site="strict",
        https_only=not settings.DEV_MODE,
    )


def check_password(candidate: str | None, expected: str) -> bool:
    """Constant-time password comparison."""
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def is_authenticated(request: Request) -> bool:
    return bool(request.session.get("authenticated"))


async def require_auth(request: Request) -> None:
    """
    FastAPI dependency that rejects requests without a logged-in session.

    Raises:
        HTTPException: 401 if the session is not authenticated
    """
    if not is_authenticated(request):
        raise HTTPException(status_code=401, detail="Authentication required")


@router.post(
    "/login",
    summary="Log in",
    description="Start an authenticated session with the upload password."
)
async def login(request: Request, body: LoginRequest):
    settings: Settings = request.app.state.settings
    events = request.app.state.events

    if check_password(body.password, settings.UPLOAD_PASSWORD):
        request.session["authenticated"] = True
        events.login_success()
        return {"success": True, "redirect": "/"}

    events.login_failed()
    raise HTTPException(status_code=401, detail="Invalid password")


@router.post(
    "/logout",
    summary="Log out",
    description="End the current session."
)
async def logout(request: Request):
    request.session.clear()
    return {"success": True}
