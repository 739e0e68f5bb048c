"""
Profile Sync - FastAPI Application
Main entry point for the profile sync service.
Keeps a mutable profile record and its published IPFS snapshot, anchored by an on-chain pointer, consistent.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from profile_sync.core.config import is_production, settings
from profile_sync.core.exceptions import ProfileSyncException, get_exception_status_code
from profile_sync.core.logging import get_logger, setup_logging
from profile_sync.domain.repositories.identity_repository import identity_repository
from profile_sync.infrastructure.cache import redis_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    setup_logging()
    await identity_repository.connect()
    yield
    # Shutdown
    await identity_repository.disconnect()
    await redis_client.disconnect()


async def profile_sync_exception_handler(request: Request, exc: ProfileSyncException) -> JSONResponse:
    """Render domain errors in the response envelope."""
    status_code = get_exception_status_code(exc)
    if status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "statusCode": status_code,
            "message": exc.message,
            "data": {"error_code": exc.error_code, "details": exc.details},
        },
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Profile Sync",
        description="Dual-tier profile sync: mutable record, IPFS snapshots and an on-chain pointer registry",
        version="1.0.0",
        docs_url="/docs" if not is_production() else None,
        redoc_url="/redoc" if not is_production() else None,
        openapi_url="/openapi.json" if not is_production() else None,
        lifespan=lifespan,
    )

    logger.info(f"CORS configured with origins: {settings.ALLOWED_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Trusted host middleware only validates the Host header
    if is_production():
        logger.info(
            f"TrustedHost middleware enabled with hosts: {settings.ALLOWED_HOSTS}"
        )
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.ALLOWED_HOSTS,
        )
    else:
        logger.info("TrustedHost middleware disabled (development mode)")

    app.add_exception_handler(ProfileSyncException, profile_sync_exception_handler)

    from profile_sync.api.routers import profile_router, sync_router

    app.include_router(sync_router.router, prefix="/api/v1/sync", tags=["Profile Sync"])
    app.include_router(profile_router.router, prefix="/api/v1/profile", tags=["Profile"])

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {
            "message": "Profile Sync API",
            "version": "1.0.0",
            "status": "healthy",
            "features": [
                "Snapshot Publishing",
                "Pull From Published Snapshot",
                "Drift Detection",
                "Batched Image Packing",
                "On-Chain Pointer Registry",
            ],
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "chain_id": settings.EVM_CHAIN_ID,
            "features_enabled": {
                "ipfs": bool(settings.IPFS_GATEWAY_URL_POST),
                "registry": bool(settings.REGISTRY_ADDRESS),
                "saga_lock_backend": settings.SAGA_LOCK_BACKEND,
            },
        }

    return app


# Create the FastAPI app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "profile_sync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level="info",
    )
