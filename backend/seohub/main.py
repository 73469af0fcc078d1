import logging

from dotenv import load_dotenv

# Load environment variables before anything reads settings
load_dotenv()

# ruff: noqa: E402
from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from seohub.config import get_settings
from seohub.constants import API_PREFIX
from seohub.constants import STATIC_DIR
from seohub.database import initialize_database
from seohub.routers.admin import router as admin_router
from seohub.routers.agencies import router as agencies_router
from seohub.routers.auth import router as auth_router
from seohub.routers.chat import router as chat_router
from seohub.routers.escalations import router as escalations_router
from seohub.routers.ga4 import router as ga4_router
from seohub.routers.invites import router as invites_router
from seohub.routers.onboarding import router as onboarding_router
from seohub.routers.orders import router as orders_router
from seohub.routers.reporting import router as reporting_router
from seohub.routers.reports import router as reports_router
from seohub.routers.requests import router as requests_router
from seohub.routers.search_console import router as search_console_router
from seohub.routers.seoworks import router as seoworks_router
from seohub.routers.system import router as system_router
from seohub.routers.users import router as users_router

# In-process cron jobs keep the event loop busy; tests never start them.
from seohub.services.scheduler_service import scheduler_service

_settings = get_settings()

# --------------------------------------------------------------------------
# Logging: LOG_LEVEL env (default INFO)
# --------------------------------------------------------------------------
_log_level = getattr(logging, _settings.log_level.upper(), logging.INFO)
logging.basicConfig(level=_log_level, format="%(levelname)s - %(message)s", handlers=[logging.StreamHandler()])

logger = logging.getLogger(__name__)

# StaticFiles raises when the directory is missing.
(STATIC_DIR / "uploads").mkdir(parents=True, exist_ok=True)
(STATIC_DIR / "reports").mkdir(parents=True, exist_ok=True)

app = FastAPI(title="Rylie SEO Hub", version=_settings.app_version, redirect_slashes=True)

# ------------------------------------------------------------------
# CORS: wildcard when auth is disabled, otherwise ALLOWED_CORS_ORIGINS
# (comma-separated) with the app URL as fallback.
# ------------------------------------------------------------------
if _settings.auth_disabled:
    cors_origins = ["*"]
elif _settings.allowed_cors_origins.strip():
    cors_origins = [o.strip() for o in _settings.allowed_cors_origins.split(",") if o.strip()]
else:
    cors_origins = [_settings.app_url]


@app.exception_handler(Exception)
async def ensure_cors_on_errors(request: Request, exc: Exception):
    """Unhandled errors become a generic 500 that still carries CORS headers."""

    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)

    origin = request.headers.get("origin", "*")
    if origin in cors_origins or "*" in cors_origins:
        allow_origin = origin
    else:
        allow_origin = cors_origins[0]

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers={
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": "*",
            "Access-Control-Allow-Headers": "*",
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Logos, deliverables and generated HTML reports
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(users_router, prefix=API_PREFIX)
app.include_router(invites_router, prefix=API_PREFIX)
app.include_router(admin_router, prefix=API_PREFIX)
app.include_router(agencies_router, prefix=API_PREFIX)
app.include_router(orders_router, prefix=API_PREFIX)
app.include_router(requests_router, prefix=API_PREFIX)
app.include_router(escalations_router, prefix=API_PREFIX)
app.include_router(reports_router, prefix=API_PREFIX)
app.include_router(reporting_router, prefix=API_PREFIX)
app.include_router(seoworks_router, prefix=API_PREFIX)
app.include_router(chat_router, prefix=API_PREFIX)
app.include_router(ga4_router, prefix=API_PREFIX)
app.include_router(search_console_router, prefix=API_PREFIX)
app.include_router(onboarding_router, prefix=API_PREFIX)
app.include_router(system_router, prefix=API_PREFIX)


@app.on_event("startup")
async def startup_event():
    initialize_database()
    logger.info("Database tables initialized")

    if _settings.report_scheduler_enabled and not _settings.testing:
        await scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    if _settings.report_scheduler_enabled and not _settings.testing:
        await scheduler_service.stop()


@app.get("/")
async def read_root():
    return {"message": "Rylie SEO Hub API"}
