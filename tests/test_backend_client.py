import asyncio

import httpx
import pytest

from app.core.config import Settings
from app.schemas.numbering import SeriesConfig
from app.services.backend_client import BackendClient, BackendError, NotAuthenticatedError
from app.services.cache import TTLCache

from conftest import BASE_URL


def test_requests_carry_bearer_token(client, authority):
    asyncio.run(client.configure_series(SeriesConfig(series_code="F001", initial_number=1)))
    request = authority.requests[-1]
    assert request.headers["Authorization"] == "Bearer test-token"
    assert str(request.url) == f"{BASE_URL}/numeracion/configurar"


def test_missing_token_short_circuits_without_network(make_client, authority):
    client = make_client(token=None)
    with pytest.raises(NotAuthenticatedError):
        asyncio.run(client.list_counters())
    assert authority.requests == []


def test_async_token_provider_is_awaited(authority):
    async def provider():
        return "async-token"

    client = BackendClient(provider, base_url=BASE_URL, transport=httpx.MockTransport(authority.handler))
    asyncio.run(client.list_counters())
    assert authority.requests[-1].headers["Authorization"] == "Bearer async-token"


def test_error_message_taken_from_body(client, authority):
    authority.fail("GET", "/numeracion/contadores", 409, {"error": "conflict", "message": "Serie bloqueada"})
    with pytest.raises(BackendError) as excinfo:
        asyncio.run(client.list_counters())
    assert str(excinfo.value) == "Serie bloqueada"
    assert excinfo.value.status_code == 409


def test_non_json_error_falls_back_to_generic_message(client, authority):
    authority.fail("GET", "/numeracion/contadores", 500, text="<html>Internal Server Error</html>")
    with pytest.raises(BackendError) as excinfo:
        asyncio.run(client.list_counters())
    assert str(excinfo.value).startswith("Error 500")
    assert excinfo.value.details == "<html>Internal Server Error</html>"


def test_transport_error_becomes_backend_error():
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = BackendClient(lambda: "tok", base_url=BASE_URL, transport=httpx.MockTransport(broken))
    with pytest.raises(BackendError) as excinfo:
        asyncio.run(client.list_counters())
    assert excinfo.value.status_code is None
    assert "No se pudo contactar" in str(excinfo.value)


def test_series_accepts_descriptor_objects():
    def handler(request):
        return httpx.Response(
            200,
            json={"success": True, "data": [{"serie": "F001", "tipo": "01"}, {"serie": "B001", "tipo": "03"}]},
        )

    client = BackendClient(lambda: "tok", base_url=BASE_URL, transport=httpx.MockTransport(handler))
    assert asyncio.run(client.list_series()) == ["F001", "B001"]


def test_series_listing_is_cached_until_configure(make_client, authority):
    client = make_client(cache=TTLCache(), cache_ttl=60)
    asyncio.run(client.configure_series(SeriesConfig(series_code="F001", initial_number=1)))
    assert asyncio.run(client.list_series()) == ["F001"]
    authority.counters["B001"] = {"numero_actual": 1, "numero_inicial": 1, "activo": True}
    assert asyncio.run(client.list_series()) == ["F001"]

    asyncio.run(client.configure_series(SeriesConfig(series_code="E001", initial_number=1)))
    assert asyncio.run(client.list_series()) == ["B001", "E001", "F001"]


def test_base_url_gets_api_prefix_once():
    assert Settings(BACKEND_API_URL="http://backend:8000/").api_base_url == "http://backend:8000/api/v1"
    assert Settings(BACKEND_API_URL="http://x/api/v1").api_base_url == "http://x/api/v1"
    assert BackendClient(lambda: None, base_url="http://x/api/v1/").base_url == "http://x/api/v1"


def test_ttl_cache_expires_entries():
    now = [100.0]
    cache = TTLCache(clock=lambda: now[0])
    cache.set("/numeracion/series", ["F001"], ttl=10)
    assert cache.get("/numeracion/series") == ["F001"]
    now[0] = 111.0
    assert cache.get("/numeracion/series") is None
    assert len(cache) == 0


def test_ttl_cache_invalidate_by_prefix():
    cache = TTLCache()
    cache.set("/numeracion/series", ["F001"], ttl=10)
    cache.set("/empresas/emp-1", {}, ttl=10)
    cache.invalidate("/numeracion")
    assert cache.get("/numeracion/series") is None
    assert cache.get("/empresas/emp-1") == {}


def test_shared_cache_still_requires_a_token(make_client, authority):
    cache = TTLCache()
    authority.counters["F001"] = {"numero_actual": 1, "numero_inicial": 1, "activo": True}
    assert asyncio.run(make_client(token="tenant-a", cache=cache, cache_ttl=60).list_series()) == ["F001"]
    sent = len(authority.requests)

    with pytest.raises(NotAuthenticatedError):
        asyncio.run(make_client(token=None, cache=cache, cache_ttl=60).list_series())
    assert len(authority.requests) == sent


def test_shared_cache_is_scoped_per_token(make_client, authority):
    cache = TTLCache()
    authority.counters["F001"] = {"numero_actual": 1, "numero_inicial": 1, "activo": True}
    asyncio.run(make_client(token="tenant-a", cache=cache, cache_ttl=60).list_series())

    asyncio.run(make_client(token="tenant-b", cache=cache, cache_ttl=60).list_series())

    assert [r.headers["Authorization"] for r in authority.requests] == ["Bearer tenant-a", "Bearer tenant-b"]
