# ventasync/routers/resources.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from ventasync.data_client import ResourceClient
from ventasync.deps import get_service
from ventasync.errors import SyncError, http_error_from_sync
from ventasync.service import SyncService

router = APIRouter(prefix="/api/v1/resources", tags=["resources"])


def _resource(resource: str, service: SyncService) -> ResourceClient:
    try:
        return service.resource(resource)
    except SyncError as e:
        raise http_error_from_sync(e)


@router.get("/{resource}")
async def obtener(resource: str, service: SyncService = Depends(get_service)) -> Any:
    """Read a collection through the cache."""
    client = _resource(resource, service)
    try:
        return await client.obtener()
    except SyncError as e:
        raise http_error_from_sync(e)


@router.put("/{resource}")
async def guardar(
    resource: str,
    items: list[dict[str, Any]] = Body(...),
    service: SyncService = Depends(get_service),
) -> dict[str, Any]:
    """Replace the whole collection."""
    client = _resource(resource, service)
    try:
        return await client.guardar(items)
    except SyncError as e:
        raise http_error_from_sync(e)


@router.post("/{resource}")
async def agregar(
    resource: str,
    item: dict[str, Any] = Body(...),
    service: SyncService = Depends(get_service),
) -> dict[str, Any]:
    client = _resource(resource, service)
    try:
        return await client.agregar(item)
    except SyncError as e:
        raise http_error_from_sync(e)


@router.put("/{resource}/{item_id}")
async def actualizar(
    resource: str,
    item_id: str,
    item: dict[str, Any] = Body(...),
    service: SyncService = Depends(get_service),
) -> dict[str, Any]:
    client = _resource(resource, service)
    try:
        return await client.actualizar(item_id, item)
    except SyncError as e:
        raise http_error_from_sync(e)


@router.delete("/{resource}/{item_id}")
async def eliminar(
    resource: str, item_id: str, service: SyncService = Depends(get_service)
) -> dict[str, Any]:
    client = _resource(resource, service)
    try:
        return await client.eliminar(item_id)
    except SyncError as e:
        raise http_error_from_sync(e)
