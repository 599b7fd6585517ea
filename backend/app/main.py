"""leadledger Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from leadledger import __version__
from leadledger.errors import (
    ConflictError,
    ExternalServiceError,
    InsufficientResourceError,
    MarketError,
    NotFoundError,
    StorageBusyError,
    UnauthorizedError,
    ValidationError,
)

from .config import get_settings
from .database import Market, close_marketplace
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import admin_router, jobs_router, maintenance_router

logger = get_logger("leadledger.api")

# Most specific family first; MarketError itself falls through to 400.
ERROR_STATUS = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InsufficientResourceError, status.HTTP_402_PAYMENT_REQUIRED),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (StorageBusyError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: MarketError) -> int:
    for family, code in ERROR_STATUS:
        if isinstance(exc, family):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.debug)
    logger.info(f"Starting leadledger API {__version__} (debug={settings.debug})")
    yield
    close_marketplace()
    logger.info("Shutting down leadledger API")


app = FastAPI(
    title="leadledger API",
    description="Lead access, job lifecycle and commission settlement",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    body = exc.to_dict()
    body["detail"] = exc.message
    headers = {"Retry-After": "1"} if isinstance(exc, StorageBusyError) else None
    return JSONResponse(status_code=code, content=jsonable_encoder(body), headers=headers)


# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs_router)
app.include_router(admin_router)
app.include_router(maintenance_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "leadledger-backend",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
def health(market: Market):
    """Health check with a storage round trip."""
    db_status = "connected"
    try:
        market.commission_summary()
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }
