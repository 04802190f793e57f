import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from receipt_ledger.api.deps import get_ingestion_queue
from receipt_ledger.api.v1.api import api_router
from receipt_ledger.core.config import settings

# --- FastAPI Application Entry Point ---

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title="Receipt Ledger API",
    description="Backend API for receipt ingestion, item categorization, and category analytics.",
    version="1.0.0",
)

# --- CORS Middleware ---
# Allow all origins for local development. Restrict in production.

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include API Routers ---

app.include_router(api_router)


# --- Startup / shutdown hooks ---

def _ingestion_queue():
    provider = app.dependency_overrides.get(get_ingestion_queue, get_ingestion_queue)
    return provider()


@app.on_event("startup")
async def startup_event():
    """Start the background ingestion workers."""
    await _ingestion_queue().start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the workers; jobs still queued are marked FAILED."""
    await _ingestion_queue().stop()


# --- Health Check ---

@app.get("/", tags=["Health"])
async def health_check():
    """Root endpoint for health check / Cloud Run readiness probe."""
    return {
        "status": "ok",
        "service": "receipt-ledger-api",
        "version": "1.0.0",
    }
