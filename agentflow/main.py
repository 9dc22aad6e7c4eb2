"""
AgentFlow - FastAPI Application Entry Point.

Step-by-step debugger for visually assembled agent workflows.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import tracemalloc

from agentflow.config import settings
from agentflow.api.routes import debug, websocket
from agentflow.service.client import ExecutionServiceClient
from agentflow.storage.memory import session_storage


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.TRACK_MEMORY and not tracemalloc.is_tracing():
        tracemalloc.start()

    session_storage.service = ExecutionServiceClient(
        settings.EXECUTION_SERVICE_URL,
        endpoint=settings.EXECUTION_SERVICE_ENDPOINT,
        token=settings.EXECUTION_SERVICE_TOKEN,
    )
    logger.info(f"Execution service: {settings.EXECUTION_SERVICE_URL}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await session_storage.close()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Debugger API

Runs a workflow graph once, step by step, while you watch.

### Features
- **Validation**: structural checks before anything runs
- **Plans**: dependency-respecting execution order, previewable
- **Human in the loop**: runs pause for user input and resume
- **Live state**: WebSocket push of the full state after every change
- **Statistics**: per-run and per-node timings across runs

### Quick Start
1. Open a session: `POST /debug/sessions`
2. Start a run: `POST /debug/sessions/{session_id}/start`
3. Watch it: `WS /ws/debug/{session_id}`
4. Answer input requests: `POST /debug/sessions/{session_id}/input`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(debug.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Step-by-step debugger for agent workflows",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "validate": "/debug/validate",
            "plan": "/debug/plan",
            "sessions": "/debug/sessions",
            "websocket": "/ws/debug/{session_id}",
        },
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "sessions_count": len(session_storage),
        "websocket_connections": websocket.manager.connection_count,
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
