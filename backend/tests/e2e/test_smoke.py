import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


@pytest.mark.asyncio
async def test_dbcheck_lists_step_table(client: AsyncClient):
    resp = await client.get("/__dbcheck")
    assert resp.status_code == 200
    assert "daily_steps" in resp.json()["tables"]


@pytest.mark.asyncio
async def test_today_snapshot_before_any_reading(client: AsyncClient):
    resp = await client.get("/steps/today")
    assert resp.status_code == 200
    body = resp.json()
    assert body["tracking"] is False
    assert body["display_total"] == 0
