# salesrecon/main.py

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from salesrecon.config import get_settings
from salesrecon.core import ReconciliationError, CommitFailure
from salesrecon.routers import health, imports, catalog

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ============================================
# Create FastAPI app
# ============================================

app = FastAPI(
    title=settings.app_name,
    description="Reconciles imported POS sales lines against the menu catalog",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ============================================
# CORS middleware
# ============================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# Error handling
# ============================================

@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    error = {"code": exc.error_code, "message": exc.message}
    if exc.field:
        error["field"] = exc.field
    if isinstance(exc, CommitFailure):
        error["retryable"] = exc.retryable

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": error},
    )

# ============================================
# Include routers
# ============================================

app.include_router(health.router, tags=["Health"])
app.include_router(imports.router, prefix="/imports", tags=["Imports"])
app.include_router(catalog.router, prefix="/catalog", tags=["Catalog"])

# ============================================
# Root endpoint
# ============================================

@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.debug else None,
    }
