# salesrecon/routers/health.py

from fastapi import APIRouter

from salesrecon.config import get_settings

router = APIRouter()


@router.get("/health")
def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "salesrecon-api",
    }


@router.get("/ready")
def readiness_check():
    """Readiness check: reports the configured storage backend."""
    settings = get_settings()
    configured = settings.storage_backend == "memory" or bool(settings.supabase_url)

    return {
        "status": "ready" if configured else "degraded",
        "checks": {
            "storage": settings.storage_backend,
            "database": "ok" if configured else "missing SUPABASE_URL",
        },
    }
