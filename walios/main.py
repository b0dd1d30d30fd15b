"""
WALI-OS FastAPI Application
Main entry point for the grant-seeking assistant API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from walios.api import ai, chat_cleanup, form, health
from walios.core.config import settings
from walios.core.sentry import capture_exception, init_sentry
from walios.database import close_db, init_db

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: Sentry, and table creation in debug mode (migrations otherwise).
    Shutdown: close database connections.
    """
    logger.info("Starting WALI-OS API...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Version: {settings.app_version}")

    if init_sentry():
        logger.info("Sentry error tracking enabled")

    if settings.debug:
        try:
            await init_db()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")

    yield

    logger.info("Shutting down WALI-OS API...")
    await close_db()
    logger.info("Database connections closed")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="WALI-OS API",
    description="""
    Grant-seeking assistant API

    - **Assistant**: answers questions about your organization, projects and deadlines
    - **Scoring**: rule-based and AI-verified opportunity fit scores
    - **Forms**: field definitions, auto-fill and an interactive form assistant
    - **Documents**: RFP/guideline analysis and compliance extraction
    """,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

# =============================================================================
# CORS Middleware
# =============================================================================

allowed_origins = [settings.frontend_url]
if settings.debug:
    allowed_origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Every API error body is ``{"error": message}``."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or incomplete request bodies are client errors (400)."""
    errors = exc.errors()
    missing = [".".join(str(p) for p in e["loc"][1:]) for e in errors if e.get("type") == "missing"]
    message = f"Missing required fields: {', '.join(missing)}" if missing else "Invalid request body"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "details": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in errors]},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    capture_exception(
        exc,
        extra={
            "request_url": str(request.url),
            "request_method": request.method,
        },
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(exc) if settings.debug else "Internal server error"},
    )


# =============================================================================
# API Routers
# =============================================================================

app.include_router(health.router)
app.include_router(ai.router)
app.include_router(form.router)
app.include_router(chat_cleanup.router)


@app.get("/")
async def root():
    return {"name": settings.app_name, "version": settings.app_version}
