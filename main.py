"""
Login Guard - Admin API Server

Brute-force protection for login endpoints: failed attempts are tracked per
client IP and per email with escalating delays and lockouts. The throttle
itself is a library (login_guard.services.login_throttle) called by the
login handler; this app exposes health checks and the rate limit admin API.
"""
# Force unbuffered output for Windows compatibility
import sys
if hasattr(sys.stdout, 'reconfigure'):
    sys.stdout.reconfigure(line_buffering=True)
    sys.stderr.reconfigure(line_buffering=True)

import asyncio
import os
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE other imports
load_dotenv()

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.loader import get_config
from login_guard.utils.structured_logger import setup_structured_logging, get_logger
from login_guard.utils.response_models import error_response

config = get_config()
setup_structured_logging(level=config.log_level, json_output=config.log_json)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    from login_guard.services.login_throttle import get_login_throttle

    throttle = get_login_throttle()
    logger.info(f"Starting Login Guard with {throttle.store.backend_name} attempt store...")
    yield
    # Let in-flight lockout writes land before the loop goes away
    await throttle.drain()
    logger.info("Shutting down...")


app = FastAPI(
    title="Login Guard",
    description="Failed-login tracking and lockout administration",
    version="1.0.0",
    lifespan=lifespan
)

# ==================== Middleware Setup ====================

from login_guard.middleware.request_id_middleware import RequestIdMiddleware
app.add_middleware(RequestIdMiddleware)


# ==================== Health Endpoints ====================

@app.get("/health")
async def health_check():
    """Basic health check endpoint for load balancers

    A failing store is reported as degraded, not unhealthy: logins keep
    working because checks fail open.
    """
    from login_guard.services.login_throttle import get_login_throttle

    store = get_login_throttle().store
    store_healthy = await asyncio.to_thread(store.is_healthy)
    health = {
        "status": "healthy" if store_healthy else "degraded",
        "store_backend": store.backend_name,
        "store_healthy": store_healthy,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    if store.backend_name == "supabase":
        health["circuit"] = store.circuit.get_status()
    return health


@app.get("/health/live")
async def liveness_check():
    """Liveness check for Kubernetes."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


# ==================== Routers ====================

from login_guard.api.rate_limit_routes import rate_limit_router
app.include_router(rate_limit_router)


# ==================== Error Handlers ====================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_response("Internal server error")
    )


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "127.0.0.1")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
