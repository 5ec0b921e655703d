"""
POSECOACH Backend API
Guided pose workout coach

FastAPI application entry point. Clients stream pose landmarks over a
WebSocket and receive phase, feedback and speech updates.
"""

import logging
import sys
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

# ============================================
# Configure Root Logger First
# ============================================
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Service routers
from coach_service.router import router as coach_router
from coach_service.models import get_session_manager

# Core utilities
from core.config import settings
from core.websocket import connection_manager
from shared.utils import setup_logger

# Setup logging
logger = setup_logger("posecoach.main", level=logging.DEBUG)
request_logger = setup_logger("posecoach.requests", level=logging.DEBUG)


# ============================================
# Request Logging Middleware
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all incoming requests and responses with timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        query_string = f"?{request.url.query}" if request.url.query else ""

        request_logger.info(f"➡️  {request.method} {request.url.path}{query_string}")
        request_logger.debug(f"    Client: {client_ip}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000

            if response.status_code < 300:
                status_emoji = "✅"
            elif response.status_code < 400:
                status_emoji = "↪️"
            elif response.status_code < 500:
                status_emoji = "⚠️"
            else:
                status_emoji = "❌"

            request_logger.info(
                f"{status_emoji} {request.method} {request.url.path} → {response.status_code} ({process_time:.1f}ms)"
            )

            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            request_logger.error(f"💥 {request.method} {request.url.path} → ERROR: {type(e).__name__}: {str(e)} ({process_time:.1f}ms)")
            request_logger.error(traceback.format_exc())
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info("🚀 POSECOACH API starting up...")

    # Load the workout definition; sessions report CONFIG_ERROR if this fails
    session_manager = get_session_manager()
    if session_manager.load_configuration_file(settings.EXERCISE_CONFIG_PATH):
        logger.info(f"📋 Exercise configuration loaded from {settings.EXERCISE_CONFIG_PATH}")
    else:
        logger.warning("⚠️ Exercise configuration unavailable, sessions will report CONFIG_ERROR")

    # Start WebSocket heartbeat
    await connection_manager.start_heartbeat()
    logger.info("💓 WebSocket heartbeat started")

    logger.info("✅ POSECOACH API ready!")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info("👋 POSECOACH API shutting down...")

    await connection_manager.stop_heartbeat()

    for session_id in list(session_manager.active_sessions):
        session_manager.cleanup_session(session_id)

    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="POSECOACH API",
    description="Guided pose workout coach - live joint-angle feedback",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    session_manager = get_session_manager()
    return {
        "status": "healthy",
        "service": "posecoach-api",
        "configuration": "loaded" if session_manager.configuration is not None else "error",
        "websocket_connections": connection_manager.connection_count
    }


@app.get("/stats")
async def get_stats():
    """Get service statistics."""
    return {
        "websocket": connection_manager.get_stats(),
        "sessions": get_session_manager().get_stats(),
    }


# Include service routers
app.include_router(coach_router, prefix="/api/coach", tags=["Coach Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
