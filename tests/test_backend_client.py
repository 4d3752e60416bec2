from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from checkin_gateway import CheckinClient, CheckinError, close_client, get_client

PERSON = {
    "id": "P1",
    "communityId": "C1",
    "firstName": "Ana",
    "lastName": "Lee",
    "companyName": None,
    "title": None,
    "checkInDate": None,
    "checkOutDate": None,
}


def make_fake_backend() -> web.Application:
    """Speaks the backend's wire format for a single person P1 in community C1."""

    async def health(request):
        return web.json_response({"status": "online"})

    async def method(request):
        body = await request.json()
        if body["params"] == ["P1"]:
            return web.json_response({"success": True, "timestamp": "2026-03-01T09:00:00", "message": "ok"})
        if body["params"] == ["P1-out"]:
            return web.json_response({
                "success": False,
                "error": "InvalidState",
                "reason": "already-checked-out",
                "message": "This person has already checked out",
            }, status=409)
        return web.json_response({"detail": "Unknown method"}, status=404)

    async def live(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        sub = await ws.receive_json()
        sid = sub["id"]
        if sub["params"] != ["C1"]:
            await ws.send_json({"msg": "nosub", "id": sid, "error": "Unknown publication"})
        else:
            await ws.send_json({"msg": "added", "sub": sid, "collection": "people", "id": "P1", "fields": PERSON})
            await ws.send_json({"msg": "added", "sub": "someone-else", "collection": "people", "id": "P9", "fields": PERSON})
            await ws.send_json({"msg": "ready", "subs": [sid]})
            await ws.send_json({"msg": "nosub", "id": sid})
        async for _ in ws:
            pass
        return ws

    app = web.Application()
    app.router.add_get("/", health)
    app.router.add_post("/methods/{name}", method)
    app.router.add_get("/live", live)
    return app


def run_with_backend(scenario):
    async def runner():
        server = TestServer(make_fake_backend())
        await server.start_server()
        client = CheckinClient(str(server.make_url("/")))
        try:
            return await scenario(client)
        finally:
            await client.close()
            await server.close()

    return asyncio.run(runner())


def test_health_check_online():
    async def scenario(client):
        return await client.health_check()

    assert run_with_backend(scenario) == {"status": "online"}


def test_health_check_offline():
    async def scenario():
        client = CheckinClient("http://127.0.0.1:1")
        try:
            return await client.health_check()
        finally:
            await client.close()

    assert asyncio.run(scenario())["status"] == "offline"


def test_check_in_returns_payload():
    async def scenario(client):
        return await client.check_in("P1")

    assert run_with_backend(scenario)["success"] is True


def test_backend_failure_is_typed():
    async def scenario(client):
        with pytest.raises(CheckinError) as exc:
            await client.check_out("P1-out")
        return exc.value

    error = run_with_backend(scenario)
    assert error.kind == "InvalidState"
    assert error.reason == "already-checked-out"
    assert error.status == 409


def test_subscribe_yields_own_frames_until_nosub():
    async def scenario(client):
        return [frame async for frame in client.subscribe("people", "C1")]

    frames = run_with_backend(scenario)
    assert [f["msg"] for f in frames] == ["added", "ready"]
    assert frames[0]["fields"]["firstName"] == "Ana"


def test_subscribe_rejected():
    async def scenario(client):
        with pytest.raises(CheckinError):
            async for _ in client.subscribe("people", "C404"):
                pass

    run_with_backend(scenario)


def test_global_client_is_reused():
    async def scenario():
        first = get_client("http://localhost:9999")
        assert get_client() is first
        await close_client()
        assert get_client() is not first
        await close_client()

    asyncio.run(scenario())
