from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from fedgraph.api import router as gateway_router
from fedgraph.api import run_until_disconnect

from conftest import make_gateway


def test_gateway_http_surface(transport):
    gateway = make_gateway(transport, playground=True)

    with TestClient(gateway.app) as client:
        response = client.post(
            "/graphql",
            json={"query": "query One($id: ID!) { project(id: $id) { name owner { name } } }",
                  "variables": {"id": "P1"}, "operationName": "One"},
            headers={"Authorization": "Bearer T"},
        )
        invalid = client.post("/graphql", json={"query": "{ nope }"})
        health = client.get("/health")
        sdl = client.get("/__supergraph.graphql")
        status = client.get("/__status")
        refreshed = client.post("/__refresh")
        playground = client.get("/playground")

    assert response.status_code == 200
    assert response.json() == {"data": {"project": {"name": "X", "owner": {"name": "Alice"}}}}
    request_calls = [call for call in transport.calls if "_service" not in call.query]
    assert [call.authorization for call in request_calls] == ["Bearer T", "Bearer T"]

    assert invalid.status_code == 400
    assert invalid.json()["data"] is None

    assert health.json() == {"status": "ok"}
    assert "type Query" in sdl.text
    assert status.json()["subgraphs"] == ["identity", "project", "task"]
    assert status.json()["last_refresh_error"] is None
    assert refreshed.json()["status"] == "ok"
    assert playground.status_code == 200
    assert "graphiql" in playground.text.lower()


class _GoneRequest:
    async def is_disconnected(self) -> bool:
        return True


class _ConnectedRequest:
    async def is_disconnected(self) -> bool:
        return False


async def test_disconnect_cancels_in_flight_work(monkeypatch):
    monkeypatch.setattr(gateway_router, "DISCONNECT_POLL_INTERVAL", 0.01)
    cancelled = asyncio.Event()

    async def work():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    completed, result = await run_until_disconnect(_GoneRequest(), work())

    assert completed is False
    assert result is None
    await asyncio.wait_for(cancelled.wait(), timeout=1)


async def test_completed_work_is_returned(monkeypatch):
    monkeypatch.setattr(gateway_router, "DISCONNECT_POLL_INTERVAL", 0.01)

    async def work():
        await asyncio.sleep(0.02)
        return 200, {"data": {}}

    assert await run_until_disconnect(_ConnectedRequest(), work()) == (True, (200, {"data": {}}))
