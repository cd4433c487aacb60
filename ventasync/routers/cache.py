# ventasync/routers/cache.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ventasync.deps import get_service
from ventasync.schemas import CacheStats, InvalidateRequest, InvalidateResponse
from ventasync.service import SyncService

router = APIRouter(prefix="/api/v1/cache", tags=["cache"])


@router.get("/stats", response_model=CacheStats)
def stats(service: SyncService = Depends(get_service)):
    return service.cache.stats()


@router.post("/invalidate", response_model=InvalidateResponse)
def invalidate(req: InvalidateRequest, service: SyncService = Depends(get_service)):
    n = service.cache.invalidate(req.key, prefix_match=req.prefix_match)
    return InvalidateResponse(key=req.key, prefix_match=req.prefix_match, invalidated=n)


@router.delete("")
def clear(service: SyncService = Depends(get_service)) -> dict[str, int]:
    """Drop every entry (the dashboard's "clear cache" button)."""
    n = service.cache.size
    service.cache.clear()
    return {"cleared": n}
