"""REST API module for the marketplace trading core.

This module provides HTTP endpoints for:
- Configuring the payment and shipment gateways
- Reading items and their trade status
- Editing and bumping items
- Buying, shipping and completing purchases
- System health monitoring
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import get_database, init_db, close as db_close
from .deps import close_managers, display_cache

logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("Initializing API...")
    await init_db()
    db = await get_database()
    async with db.connection() as store:
        await display_cache.load_categories(store)

    yield

    # Shutdown
    logger.info("Shutting down API...")
    await close_managers()
    await db_close()

# Create FastAPI app
app = FastAPI(
    title="Market Trading API",
    description="REST API for marketplace purchases and deliveries",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Answer malformed request bodies with 400."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_errors(exc)}
    )

def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]

# Import and include all routers
from .items import router as items_router
from .transactions import router as transactions_router
from .system import router as system_router

# Include all routers
app.include_router(items_router)
app.include_router(transactions_router)
app.include_router(system_router)
