# FILE: regalpaket/app.py
"""
FastAPI application entry point for the Regalpaket service
Serves page images and annotations out of container packages
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from regalpaket import __version__
from regalpaket.config import get_settings
from regalpaket.errors import ArchiveBusyError, PackageError
from regalpaket.middleware.upload_limit import UploadLimitMiddleware
from regalpaket.routes import health, packages
from regalpaket.services.archive_store import ArchiveStore
from regalpaket.services.converter import Converter
from regalpaket.services.package_service import PackageService
from regalpaket.services.path_locks import PathLockRegistry

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_package_service(cfg) -> PackageService:
    """Wire the process-scoped lock registry, store, converter and service"""
    store = ArchiveStore(
        locks=PathLockRegistry(),
        lock_timeout=cfg.lock_timeout_seconds,
        compress_level=cfg.archive_compress_level
    )
    return PackageService(store, Converter(store))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    cfg = get_settings()
    logger.info(f"Starting Regalpaket service v{__version__}")
    logger.info(f"Library path: {cfg.library_path}")
    
    service = build_package_service(cfg)
    swept = service.store.sweep_stale_temp_files(cfg.library_path, cfg.stale_temp_max_age_seconds)
    if swept:
        logger.info(f"Removed {swept} stale temp file(s) from the library")
    app.state.package_service = service
    
    yield
    
    # Shutdown
    logger.info("Shutting down Regalpaket service")


app = FastAPI(
    title="Regalpaket API",
    description="Container packages of rendered sheet-music pages with annotations",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Container write size caps
app.add_middleware(
    UploadLimitMiddleware,
    upload_limit=settings.upload_limit_mb * 1024 * 1024,
    annotation_limit=settings.annotation_limit_kb * 1024
)


@app.exception_handler(PackageError)
async def package_error_handler(request: Request, exc: PackageError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc}")
    headers = {"Retry-After": "1"} if isinstance(exc, ArchiveBusyError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": str(exc)},
        headers=headers
    )


# Exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )

# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(packages.router, prefix="/packages", tags=["packages"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Regalpaket",
        "version": __version__,
        "status": "active"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "regalpaket.app:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.environment == "development"
    )
