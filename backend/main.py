# main.py — Board Assistant API
# Features:
# - Request correlation IDs carried into every log record
# - Security headers
# - Uniform {success, error, message} error envelope
# - Health check with DB verification
# - All routers registered

import os
import json
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from database import init_db, close_db, get_db_session
from errors import BoardError, Forbidden, Unauthenticated
from logging_system import (
    LogCategory, RequestContext, configure_logging, log_security,
    reset_current_context, set_current_context,
)
from telemetry import setup_telemetry

configure_logging()
logger = logging.getLogger("board-assistant")

VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    # JWT Secret
    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("⚠️  JWT_SECRET_KEY is not set or too short — use the identity provider's signing secret")

    # LLM Providers
    llm_keys = {
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY"),
        "GROQ_API_KEY": os.getenv("GROQ_API_KEY"),
    }
    active_providers = [k for k, v in llm_keys.items() if v]
    if os.getenv("LLM_PROVIDER", "").lower() == "local":
        active_providers.append(f"LOCAL_LLM_URL={os.getenv('LOCAL_LLM_URL', 'http://localhost:11434/v1')}")
    if active_providers:
        logger.info(f"🤖 LLM providers configured: {', '.join(active_providers)}")
    else:
        warnings.append(
            "⚠️  No LLM provider configured — the assistant will answer in degraded mode. "
            "Set OPENAI_API_KEY or GROQ_API_KEY in .env"
        )

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting Board Assistant v{VERSION}...")
    await init_db()
    _check_startup_config()
    # no-op if OTEL_EXPORTER_OTLP_ENDPOINT not set
    setup_telemetry(app)
    yield
    logger.info("🛑 Shutting down Board Assistant...")
    await close_db()


app = FastAPI(
    title="Board Assistant",
    description="AI orchestration over organization-scoped project boards",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    context = RequestContext.create(correlation_id=request.headers.get("X-Correlation-ID"))
    if request.headers.get("X-Request-ID"):
        context.request_id = request.headers["X-Request-ID"]
    request.state.request_id = context.request_id
    request.state.correlation_id = context.correlation_id
    token = set_current_context(context)

    try:
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = context.request_id
        response.headers["X-Correlation-ID"] = context.correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} "
            f"({duration:.3f}s) [rid={context.request_id[:8]}]",
            extra={"category": LogCategory.API.value, "duration_ms": duration * 1000},
        )
        return response
    finally:
        reset_current_context(token)


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(BoardError)
async def board_error_handler(request: Request, exc: BoardError):
    if isinstance(exc, (Unauthenticated, Forbidden)):
        log_security(
            exc.code,
            path=request.url.path,
            user_id=getattr(request.state, "user_id", None),
            reason=exc.message,
        )
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    content = exc.to_envelope()
    if isinstance(exc, Forbidden) and exc.required_roles:
        content["requiredRoles"] = exc.required_roles
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request data",
            "message": ", ".join(e["msg"] for e in errors),
            "details": errors,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "message": "The request could not be completed. Please try again.",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import ai, organizations, projects, columns, tasks, agents

app.include_router(organizations.user_router)
app.include_router(organizations.router)
app.include_router(projects.router)
app.include_router(columns.router)
app.include_router(tasks.router)
app.include_router(agents.router)
app.include_router(ai.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            from sqlalchemy import text
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    }


@app.get("/")
async def root():
    return {
        "name": "Board Assistant",
        "version": VERSION,
        "description": "AI orchestration over organization-scoped project boards",
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
