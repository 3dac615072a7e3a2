"""Unit Tests for the Supabase client - request shape and error mapping

How: httpx.MockTransport stands in for Supabase; no network.
"""
import httpx
import pytest

from dataproxy.errors import AuthError, UpstreamError
from dataproxy.integrations.supabase_client import (
    SupabaseIdentity,
    SupabaseStore,
    eq,
    gte,
    in_,
)


def _transport(handler, seen=None):
    def _handle(request):
        if seen is not None:
            seen.append(request)
        return handler(request)
    return httpx.MockTransport(_handle)


def test_filter_params():
    assert eq("client_id", "C1").to_param() == "eq.C1"
    assert gte("created_at", "2026-10-01").to_param() == "gte.2026-10-01"
    assert in_("status", ["initiated", "in_progress"]).to_param() == 'in.("initiated","in_progress")'
    assert in_("id", ['a"b', "c,d"]).to_param() == 'in.("a\\"b","c,d")'


@pytest.mark.asyncio
async def test_select_builds_postgrest_query(settings):
    seen = []
    store = SupabaseStore(settings, transport=_transport(lambda r: httpx.Response(200, json=[{"id": "1"}]), seen))

    rows = await store.select(
        "calls",
        columns="id, status",
        filters=[eq("client_id", "C1"), in_("status", ["initiated"])],
        limit=5,
    )

    assert rows == [{"id": "1"}]
    request = seen[0]
    assert request.url.path == "/rest/v1/calls"
    assert request.url.params["select"] == "id, status"
    assert request.url.params["client_id"] == "eq.C1"
    assert request.url.params["status"] == 'in.("initiated")'
    assert request.url.params["order"] == "created_at.desc"
    assert request.url.params["limit"] == "5"
    assert request.headers["apikey"] == "service-key"
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.method == "GET"


@pytest.mark.asyncio
async def test_select_without_order(settings):
    seen = []
    store = SupabaseStore(settings, transport=_transport(lambda r: httpx.Response(200, json=[]), seen))

    await store.select("user_roles", columns="role", order_by=None)

    assert "order" not in seen[0].url.params


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"message": "relation does not exist"}),
    httpx.Response(401, json={"message": "bad key"}),
    httpx.Response(200, json={"not": "a list"}),
    httpx.Response(200, content=b"<html>"),
])
async def test_select_failures_become_upstream_errors(settings, response):
    store = SupabaseStore(settings, transport=_transport(lambda r: response))

    with pytest.raises(UpstreamError):
        await store.select("calls")


@pytest.mark.asyncio
async def test_select_transport_error(settings):
    def _boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    store = SupabaseStore(settings, transport=httpx.MockTransport(_boom))

    with pytest.raises(UpstreamError):
        await store.select("calls")


@pytest.mark.asyncio
async def test_verify_token(settings):
    seen = []
    identity = SupabaseIdentity(settings, transport=_transport(lambda r: httpx.Response(200, json={"id": "user-1"}), seen))

    assert await identity.verify_token("tok") == "user-1"
    assert seen[0].url.path == "/auth/v1/user"
    assert seen[0].headers["authorization"] == "Bearer tok"
    assert seen[0].headers["apikey"] == "anon-key"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(401, json={"msg": "invalid JWT"}),
    httpx.Response(403, json={"msg": "forbidden"}),
    httpx.Response(200, json={}),
])
async def test_verify_token_rejected(settings, response):
    identity = SupabaseIdentity(settings, transport=_transport(lambda r: response))

    with pytest.raises(AuthError) as exc:
        await identity.verify_token("tok")
    assert exc.value.message == "Invalid token"


@pytest.mark.asyncio
async def test_verify_token_outage(settings):
    identity = SupabaseIdentity(settings, transport=_transport(lambda r: httpx.Response(503)))

    with pytest.raises(UpstreamError):
        await identity.verify_token("tok")


@pytest.mark.asyncio
async def test_ping(settings):
    identity = SupabaseIdentity(settings, transport=_transport(lambda r: httpx.Response(200, json={})))
    assert await identity.ping() is True

    identity = SupabaseIdentity(settings, transport=_transport(lambda r: httpx.Response(502)))
    assert await identity.ping() is False
