"""FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .domain_errors import DomainError
from .problem_details import build_problem_details_response
from .routers import action_plans, audit, auth, grading, months, notifications, permissions, unlock_requests
from .services.permissions import PermissionCache

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create app
app = FastAPI(
    title="Action Plan Tracker",
    version="1.0.0",
    description="Backend API for monthly action plans, grading and unlock requests"
)

if settings.ENV.lower() == "production" and settings.JWT_SECRET_KEY == "change-me-in-production":
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")

# One permission cache per process; invalidated by permission matrix writes.
app.state.permission_cache = PermissionCache(ttl_seconds=settings.PERMISSION_CACHE_TTL_SECONDS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"] if settings.ENV.lower() == "production" else ["*"],
)


@app.exception_handler(DomainError)
async def handle_domain_error(_: Request, exc: DomainError):
    return build_problem_details_response(exc)


# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(action_plans.router, prefix="/api/v1")
app.include_router(grading.router, prefix="/api/v1")
app.include_router(months.router, prefix="/api/v1")
app.include_router(unlock_requests.router, prefix="/api/v1")
app.include_router(permissions.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": "1.0.0"}
