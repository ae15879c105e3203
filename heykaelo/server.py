"""FastAPI server for the HeyKaelo WhatsApp assistant.

Run with:
    uvicorn heykaelo.server:app --reload --host 0.0.0.0 --port 3001
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from heykaelo.api.routes import router, webhook_router
from heykaelo.bootstrap import build_context
from heykaelo.config import CORS_ORIGINS, REMINDERS_ENABLED, SERVER_HOST, SERVER_PORT
from heykaelo.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the datastore, clients and dispatcher once and keep them in app state."""
    logger.info("Building HeyKaelo services…")
    context = build_context()
    application.state.dispatcher = context.dispatcher
    application.state.approvals = context.approvals
    application.state.whatsapp = context.whatsapp
    application.state.webhook_events = context.webhook_events

    if REMINDERS_ENABLED:
        context.reminders.start()
    logger.info("Assistant ready.")
    yield

    context.reminders.stop()
    metrics.flush()
    context.engine.dispose()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="HeyKaelo Assistant",
    description=(
        "WhatsApp booking assistant for small businesses: onboarding, "
        "bookings with owner approval, client registration and reminders."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the website chat simulator) ────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(webhook_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "HeyKaelo Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "webhook": "/webhooks/whatsapp",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting HeyKaelo API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "heykaelo.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
