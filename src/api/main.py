"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import require_checkout_api_key
from src.api.endpoints import checkout as checkout_endpoints
from src.api.endpoints.checkout import checkout_api
from src.integrations.clients.factory import should_use_real_integrations

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Kola Checkout API",
    description="Draft application, M-Pesa payment and finalization for the buy-online wizard",
    version="1.0.0",
    dependencies=[Depends(require_checkout_api_key)],  # protect everything by default
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkout_api, prefix="/api/v1/checkout", tags=["Checkout"])


@app.get("/", tags=["Health"])
async def root():
    return {"service": "Kola Checkout API", "status": "healthy", "version": "1.0.0", "timestamp": datetime.now().isoformat()}


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check with the active integrations mode and number of open checkouts."""
    store = checkout_endpoints._store
    return {
        "status": "healthy",
        "integrations": "real" if should_use_real_integrations() else "mock",
        "open_checkouts": len(store) if store is not None else 0,
        "timestamp": datetime.now().isoformat(),
    }


# ============================================================================
# STARTUP/SHUTDOWN EVENTS
# ============================================================================
@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    logger.info("Starting Kola Checkout API (integrations=%s)...",
                "real" if should_use_real_integrations() else "mock")


@app.on_event("shutdown")
async def shutdown_event():
    """Close every open checkout so no payment timer outlives the app"""
    logger.info("Shutting down Kola Checkout API...")
    store = checkout_endpoints._store
    if store is not None:
        store.close_all()
