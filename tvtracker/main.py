import logging
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import urlencode

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from tvtracker.auth import get_user_id
from tvtracker.config import is_enabled, settings
from tvtracker.database import init_db
from tvtracker.exceptions import LoggedOut, LoginRequired
from tvtracker.logging_config import configure_logging
from tvtracker.request_context import RequestContextMiddleware
from tvtracker.routers import account_router, auth_router, metrics_router, plex_router, tv_router
from tvtracker.templating import templates

logger = logging.getLogger(__name__)

# reachable while maintenance mode is on
MAINTENANCE_PATHS = ("/maintenance", "/static", "/metrics")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    await init_db()
    logger.info(f"TV Tracker started ({settings.environment_name})")
    yield


app = FastAPI(title="TV Tracker", lifespan=lifespan)


@app.middleware("http")
async def maintenance_mode(request: Request, call_next):
    if is_enabled("maintenance_mode") and not request.url.path.startswith(MAINTENANCE_PATHS):
        return templates.TemplateResponse(request, "maintenance.html", {}, status_code=503)
    return await call_next(request)


# The session middleware wraps the maintenance check, the request context wraps everything
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie="__session",
    max_age=settings.session_max_age,
    same_site="lax",
    https_only=settings.https_only
)
app.add_middleware(RequestContextMiddleware)

# Mount static files
app.mount("/static", StaticFiles(directory=Path(__file__).parent / "static"), name="static")

# Include routers
app.include_router(tv_router, prefix="/tv", tags=["tv"])
app.include_router(account_router, tags=["account"])
app.include_router(auth_router, tags=["auth"])
app.include_router(plex_router, tags=["plex"])
app.include_router(metrics_router, tags=["metrics"])


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    query = urlencode({"redirectTo": exc.redirect_to})
    return RedirectResponse(url=f"/login?{query}", status_code=303)


@app.exception_handler(LoggedOut)
async def logged_out_handler(request: Request, exc: LoggedOut):
    return RedirectResponse(url="/", status_code=303)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return templates.TemplateResponse(
        request,
        "error.html",
        {"status_code": exc.status_code, "detail": exc.detail},
        status_code=exc.status_code
    )


@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    """Landing page."""
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "logged_in": bool(get_user_id(request)),
            "signup_disabled": is_enabled("signup_disabled"),
        }
    )


@app.get("/maintenance", response_class=HTMLResponse)
async def maintenance(request: Request):
    return templates.TemplateResponse(request, "maintenance.html", {})
