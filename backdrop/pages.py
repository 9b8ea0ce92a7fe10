"""
Browser pages.

Serves the login form, the upload/preview page (with limits and defaults
rendered in from settings) and the static assets under public/.
"""

from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings
from .security import is_authenticated

PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_DIR / "templates"
PUBLIC_DIR = PACKAGE_DIR / "public"

router = APIRouter(tags=["Pages"], include_in_schema=False)


def mount_static(app) -> None:
    """Serve public/ under /static."""
    app.mount("/static", StaticFiles(directory=str(PUBLIC_DIR)), name="static")


def wants_json(request: Request) -> bool:
    """True for fetch/XHR callers, which get a 401 instead of a redirect."""
    accept = request.headers.get("accept", "")
    requested_with = request.headers.get("x-requested-with", "")
    return "application/json" in accept or requested_with.lower() == "xmlhttprequest"


def _to_login(request: Request) -> RedirectResponse:
    if wants_json(request):
        raise HTTPException(status_code=401, detail="Authentication required")
    return RedirectResponse("/login", status_code=302)


def render_upload_page(settings: Settings) -> str:
    """Fill the {{NAME}} placeholders in upload.html from settings."""
    html = (TEMPLATES_DIR / "upload.html").read_text(encoding="utf-8")
    values = {
        "PREVIEW_DEBOUNCE_MS": settings.PREVIEW_DEBOUNCE_MS,
        "MAX_UPLOAD_MB": settings.MAX_UPLOAD_MB,
        "DEFAULT_BLUR": settings.DEFAULT_BLUR,
        "DEFAULT_SCALE": settings.DEFAULT_SCALE,
        "MIN_BLUR": settings.MIN_BLUR,
        "MAX_BLUR": settings.MAX_BLUR,
        "MIN_SCALE": settings.MIN_SCALE,
        "MAX_SCALE": settings.MAX_SCALE,
    }
    for name, value in values.items():
        html = html.replace("{{%s}}" % name, str(value))
    return html


@router.get("/login")
async def login_page(request: Request):
    if is_authenticated(request):
        return RedirectResponse("/", status_code=302)
    return FileResponse(TEMPLATES_DIR / "login.html", media_type="text/html")


@router.get("/")
async def index(request: Request):
    if not is_authenticated(request):
        return _to_login(request)
    return RedirectResponse("/upload.html", status_code=302)


@router.get("/upload.html")
async def upload_page(request: Request):
    if not is_authenticated(request):
        return _to_login(request)
    return HTMLResponse(render_upload_page(request.app.state.settings))
