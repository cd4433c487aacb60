"""Tests for the fetch-with-cache client and the per-resource CRUD helpers."""

import asyncio
from dataclasses import replace

import pytest

from ventasync.cache import make_cache_key
from ventasync.data_client import resource_of
from ventasync.errors import (
    MutationRejected,
    NetworkError,
    PayloadError,
    RequestTimeout,
    UnknownResource,
)
from ventasync.service import SyncService


def test_resource_of() -> None:
    assert resource_of("/productos/agregar") == "productos"
    assert resource_of("/ventas") == "ventas"
    assert resource_of("ventas/V1?x=1") == "ventas"


class TestReads:
    async def test_miss_fetches_and_stores(self, service, backend) -> None:
        data = await service.resource("ventas").obtener()

        assert data == backend.data["ventas"]
        assert backend.count("GET", "/api/ventas") == 1
        assert service.cache.get("/ventas:{}") == data

    async def test_hit_returns_cached_then_refreshes_in_background(
        self, service, backend, scheduler
    ) -> None:
        ventas = service.resource("ventas")
        first = await ventas.obtener()
        events = []
        service.notifier.subscribe(events.append)

        backend.data["ventas"].append({"id": "V3", "total": 100})
        second = await ventas.obtener()

        # served from cache: the new sale is not visible yet
        assert second == first
        assert backend.count("GET", "/api/ventas") == 1

        await scheduler.settle()
        assert backend.count("GET", "/api/ventas") == 2
        assert service.cache.get("/ventas:{}") == backend.data["ventas"]
        assert [e.resource for e in events] == ["ventas"]
        assert events[0].payload == backend.data["ventas"]

    async def test_use_cache_false_always_fetches(self, service, backend) -> None:
        await service.client.request("/ventas", use_cache=False)
        await service.client.request("/ventas", use_cache=False)

        assert backend.count("GET", "/api/ventas") == 2
        assert "/ventas:{}" not in service.cache

    async def test_disabled_resource_is_not_cached(self, settings, scheduler, backend) -> None:
        settings = replace(settings, cache_disabled=frozenset({"usuarios"}))
        async with SyncService(settings, scheduler=scheduler, transport=backend.transport()) as svc:
            await svc.resource("usuarios").obtener()
            await svc.resource("usuarios").obtener()

            assert backend.count("GET", "/api/usuarios") == 2
            assert svc.cache.size == 0
        await scheduler.aclose()

    async def test_explicit_cache_key(self, service, backend) -> None:
        await service.client.request("/ventas", cache_key="ventas-list")
        assert service.cache.get("ventas-list") == backend.data["ventas"]
        assert "/ventas:{}" not in service.cache

    async def test_request_options_change_the_key(self, service, backend) -> None:
        await service.client.request("/ventas", params={"desde": "2024-01-01"})
        key = make_cache_key("/ventas", {"params": {"desde": "2024-01-01"}})
        assert key in service.cache
        assert "/ventas:{}" not in service.cache

    async def test_fetch_fresh_skips_lookup_and_stores(self, service, backend) -> None:
        service.cache.set("/ventas:{}", ["stale"])

        data = await service.client.fetch_fresh("/ventas")

        assert data == backend.data["ventas"]
        assert service.client.cached("/ventas") == data

    async def test_hit_refresh_does_not_resurrect_deleted_entry(
        self, service, backend, scheduler
    ) -> None:
        ventas = service.resource("ventas")
        await ventas.obtener()
        backend.gate = asyncio.Event()
        backend.entered = asyncio.Event()

        await ventas.obtener()
        await backend.entered.wait()
        service.cache.delete("/ventas:{}")
        backend.gate.set()
        await scheduler.settle()

        assert "/ventas:{}" not in service.cache


class TestWrites:
    async def test_agregar_invalidates_resource_reads(self, service, backend, scheduler) -> None:
        productos = service.resource("productos")
        await productos.obtener()
        await service.resource("ventas").obtener()

        result = await productos.agregar({"id": "P4", "nombre": "Parlante"})

        assert result["success"] is True
        assert service.cache.get("/productos:{}") is None
        assert service.cache.get("/ventas:{}") == backend.data["ventas"]

    async def test_write_schedules_refresh_of_canonical_read(
        self, service, backend, scheduler
    ) -> None:
        productos = service.resource("productos")
        await productos.obtener()
        await productos.agregar({"id": "P4", "nombre": "Parlante"})

        await scheduler.settle()

        assert backend.count("GET", "/api/productos") == 2
        cached = service.cache.get("/productos:{}")
        assert {"id": "P4", "nombre": "Parlante"} in cached

        # next read is warm and current
        assert await productos.obtener() == backend.data["productos"]

    async def test_writes_are_never_cached(self, service, backend) -> None:
        await service.resource("ventas").guardar([{"id": "V9"}])
        assert service.cache.size == 0
        assert backend.data["ventas"] == [{"id": "V9"}]

    async def test_actualizar_and_eliminar(self, service, backend) -> None:
        usuarios = service.resource("usuarios")
        await usuarios.actualizar("U1", {"nombre": "Ana María"})
        assert backend.data["usuarios"][0]["nombre"] == "Ana María"

        await usuarios.eliminar("U1")
        assert backend.data["usuarios"] == []
        assert backend.count("DELETE", "/api/usuarios/U1") == 1

    async def test_rejected_mutation(self, service, backend) -> None:
        with pytest.raises(MutationRejected, match="no encontrado"):
            await service.resource("usuarios").actualizar("U404", {"nombre": "x"})

    async def test_envelope_must_be_an_object(self, service, backend) -> None:
        backend.bare_list.add("/api/pedidos/agregar")
        with pytest.raises(PayloadError):
            await service.resource("pedidos").agregar({"id": "O1"})


class TestFailures:
    async def test_non_2xx_raises_and_is_not_cached(self, service, backend) -> None:
        await service.resource("ventas").obtener()
        backend.fail_next("/api/productos", 500)

        with pytest.raises(NetworkError) as excinfo:
            await service.resource("productos").obtener()

        assert excinfo.value.status_code == 500
        assert "Error en /api/productos" in str(excinfo.value)
        assert "/productos:{}" not in service.cache
        assert service.cache.get("/ventas:{}") == backend.data["ventas"]

    async def test_failed_write_leaves_cache_alone(self, service, backend) -> None:
        await service.resource("productos").obtener()
        backend.fail_next("/api/productos/agregar", 500)

        with pytest.raises(NetworkError):
            await service.resource("productos").agregar({"id": "P4"})

        assert service.cache.get("/productos:{}") == backend.data["productos"]

    async def test_malformed_json(self, service, backend) -> None:
        backend.malformed.add("/api/ventas")
        with pytest.raises(PayloadError):
            await service.resource("ventas").obtener()
        assert service.cache.size == 0

    async def test_malformed_json_is_a_network_error(self, service, backend) -> None:
        backend.malformed.add("/api/ventas")
        with pytest.raises(NetworkError):
            await service.resource("ventas").obtener()

    async def test_timeout(self, service, backend) -> None:
        backend.timeouts.add("/api/ventas")
        with pytest.raises(RequestTimeout):
            await service.resource("ventas").obtener()

    async def test_connection_error(self, service, backend) -> None:
        backend.down = True
        with pytest.raises(NetworkError):
            await service.resource("ventas").obtener()

    async def test_unknown_resource(self, service) -> None:
        with pytest.raises(UnknownResource):
            service.resource("clientes")

