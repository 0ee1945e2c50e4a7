"""
Storefront Core API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.exceptions import StorefrontError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(
        "Storefront API starting up",
        version=settings.app_version,
        checkout_mode=settings.resolved_checkout_mode,
    )
    yield
    logger.info("Storefront API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Checkout, order and inventory core for the storefront",
    lifespan=lifespan,
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    """Domain errors become JSON with the class name, at the status the class declares."""
    if exc.status_code >= 500:
        logger.error("api.domain_error", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    body = {"detail": exc.message, "error": type(exc).__name__}
    for attr in ("available", "requested", "line_index", "sku"):
        value = getattr(exc, attr, None)
        if value is not None:
            body[attr] = value
    return JSONResponse(status_code=exc.status_code, content=body)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import checkout, inventory, orders

app.include_router(checkout.router)
app.include_router(orders.router)
app.include_router(inventory.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
