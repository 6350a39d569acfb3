from fastapi import APIRouter, Depends

from src.backend.config import settings
from src.backend.request_context import request_id_dependency

router = APIRouter(prefix="", tags=["system"], dependencies=[Depends(request_id_dependency)])


@router.get("/health")
async def health_check_v1() -> dict:
    """API v1 health endpoint."""
    return {"status": "ok", "version": "v1"}


@router.get("/system/storage")
async def storage_mode_v1() -> dict:
    """Report which repository backend is configured (no connection details)."""

    return {"sql_repositories": settings.use_sql_repos and bool(settings.database_url)}
