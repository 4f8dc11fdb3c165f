from fastapi import FastAPI, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
import logging

from app.core.config import settings
from app.api.v1.api import api_router
from app.core.error_handler import setup_error_handlers
from app.core.logging import RequestLoggingMiddleware, setup_logging
from app.db.database import dispose_db, get_db, init_db

setup_logging()
logger = logging.getLogger(__name__)

class WelcomeResponse(BaseModel):
    message: str

class HealthResponse(BaseModel):
    status: str
    database: str
    version: str

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handle startup and shutdown events.
    """
    logger.info("Starting up application...")
    await init_db()

    yield

    logger.info("Shutting down application...")
    await dispose_db()

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Event Share Access API - who may see and do what on a shared event.

    ## Features

    * **Authentication**
        * JWT-based authentication
        * Token refresh mechanism

    * **Access control**
        * One role per caller and event: owner, co-host, moderator, guest, viewer, authenticated guest
        * Capabilities derived from the role, narrowed by overrides, event defaults and share links
        * Denials carry a machine-readable reason

    * **Visibility**
        * `anyone_with_link`, `invited_only` and `private`
        * Tightening applies the event's anonymous transition policy to guest sessions

    * **Sharing**
        * Share links with use limits, expiry, passwords and email restrictions
        * Anonymous guest sessions that can be claimed after signing in

    ## Authentication

    Most endpoints require authentication using JWT tokens. To authenticate:
    1. Get a token pair using the `/auth/login` endpoint
    2. Include the access token in the `Authorization` header:
       `Authorization: Bearer <token>`
    3. Use the refresh token to get new access tokens

    Anonymous guests identify themselves with the `X-Guest-Session` header.

    ## Error Handling

    * 400: Bad Request - Operation not allowed in the current state
    * 401: Unauthorized - Sign-in or link password required
    * 403: Forbidden - Role or capability missing
    * 404: Not Found - Event, link or participant doesn't exist
    * 409: Conflict - Concurrent change, retry
    * 410: Gone - Link expired, revoked or used up
    * 503: Service Unavailable - Access could not be decided in time
    """,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs" if settings.SHOW_DOCS else None,
    redoc_url=f"{settings.API_V1_STR}/redoc" if settings.SHOW_DOCS else None,
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
    lifespan=lifespan
)

# Add CORS middleware
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(RequestLoggingMiddleware)

setup_error_handlers(app)

# Include API router
app.include_router(api_router, prefix=settings.API_V1_STR)

# Custom OpenAPI schema
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

@app.get(
    "/",
    response_model=WelcomeResponse,
    status_code=status.HTTP_200_OK,
    summary="Root endpoint",
    description="Welcome endpoint for the API",
)
async def root() -> WelcomeResponse:
    """Root endpoint returning a welcome message."""
    return WelcomeResponse(message="Welcome to the Event Share Access API")

@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Liveness plus a database round trip.",
    responses={
        200: {
            "description": "Service healthy",
            "content": {
                "application/json": {
                    "example": {"status": "ok", "database": "ok", "version": "1.0.0"}
                }
            }
        },
        503: {"description": "Database unreachable"}
    }
)
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.error("Health check failed", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "degraded", "database": "unreachable", "version": settings.VERSION}
        )
    return HealthResponse(status="ok", database="ok", version=settings.VERSION)
