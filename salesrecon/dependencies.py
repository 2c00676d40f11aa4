# salesrecon/dependencies.py

"""
FastAPI dependencies.

Validates Supabase JWTs to resolve the caller's tenant, and provides the
shared reconciliation service.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from salesrecon.config import get_settings
from salesrecon.core import InMemoryStore, ReconciliationService
from salesrecon.database import SupabaseStore, get_supabase_admin

security = HTTPBearer()


def get_current_tenant(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """
    Validate the Supabase JWT and return the caller's tenant id.

    The tenant comes from the user's `app_metadata.tenant_id`; single-user
    tenants fall back to the user id.
    This is a sync function -- FastAPI auto-runs it in a threadpool.
    """
    token = credentials.credentials

    try:
        user_response = get_supabase_admin().auth.get_user(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user_response is None or user_response.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = user_response.user
    app_metadata = user.app_metadata or {}
    return app_metadata.get("tenant_id") or user.id


@lru_cache()
def get_reconciliation_service() -> ReconciliationService:
    """One service per process, so approval locks are shared across requests."""
    settings = get_settings()

    if settings.storage_backend == "memory":
        store = InMemoryStore()
    else:
        store = SupabaseStore()

    return ReconciliationService(store, settings)
