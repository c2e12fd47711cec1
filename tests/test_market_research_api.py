"""Market research endpoints."""
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update

from compass.models import MarketResearch


@pytest.fixture
def scheduled(monkeypatch) -> list:
    """Capture background runs instead of executing the pipeline."""
    runs = []

    async def fake_run(research_id, session_factory=None, providers=None):
        runs.append(research_id)

    monkeypatch.setattr("compass.routers.market_research.run_market_research", fake_run)
    return runs


def _url(company: dict) -> str:
    return f"/api/v1/companies/{company['id']}/market-research"


async def _finish(db_session, status="COMPLETED", **fields):
    await db_session.execute(update(MarketResearch).values(status=status, **fields))
    await db_session.commit()


async def test_start_returns_immediately(client: AsyncClient, auth_headers: dict, company: dict, scheduled: list):
    response = await client.post(_url(company), headers=auth_headers)

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "IN_PROGRESS"
    assert data["message"]
    assert scheduled == [uuid.UUID(data["research_id"])]

    latest = await client.get(_url(company), headers=auth_headers)
    assert latest.status_code == 200
    body = latest.json()
    assert body["id"] == data["research_id"]
    assert [(e["step"], e["status"]) for e in body["progress"]] == [("Initializing", "completed")]


async def test_duplicate_start_conflicts(
    client: AsyncClient, auth_headers: dict, company: dict, scheduled: list, db_session
):
    first = await client.post(_url(company), headers=auth_headers)
    second = await client.post(_url(company), headers=auth_headers)

    assert second.status_code == 409
    assert second.json()["detail"]["research_id"] == first.json()["research_id"]
    assert len(scheduled) == 1
    assert await db_session.scalar(select(func.count()).select_from(MarketResearch)) == 1


async def test_new_run_allowed_after_completion(
    client: AsyncClient, auth_headers: dict, company: dict, scheduled: list, db_session
):
    await client.post(_url(company), headers=auth_headers)
    await _finish(db_session)

    response = await client.post(_url(company), headers=auth_headers)
    assert response.status_code == 202

    history = await client.get(f"{_url(company)}/history", headers=auth_headers)
    assert [r["status"] for r in history.json()] == ["IN_PROGRESS", "COMPLETED"]


async def test_start_for_foreign_company(client: AsyncClient, company: dict, other_auth_headers: dict, scheduled: list):
    response = await client.post(_url(company), headers=other_auth_headers)
    assert response.status_code == 404
    assert scheduled == []


async def test_latest_without_research(client: AsyncClient, auth_headers: dict, company: dict):
    response = await client.get(_url(company), headers=auth_headers)
    assert response.status_code == 404


async def test_patch_updates_only_given_fields(
    client: AsyncClient, auth_headers: dict, company: dict, scheduled: list, db_session
):
    await client.post(_url(company), headers=auth_headers)
    await _finish(db_session, executive_summary="Old summary", market_position="Leader")

    response = await client.patch(
        _url(company),
        json={"executive_summary": "New summary", "threats": [{"title": "Tariffs", "description": "Steel"}]},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["executive_summary"] == "New summary"
    assert data["market_position"] == "Leader"
    assert data["threats"] == [{"title": "Tariffs", "description": "Steel"}]


async def test_patch_without_recognised_fields(
    client: AsyncClient, auth_headers: dict, company: dict, scheduled: list, db_session
):
    await client.post(_url(company), headers=auth_headers)
    await _finish(db_session)

    response = await client.patch(_url(company), json={"status": "FAILED"}, headers=auth_headers)
    assert response.status_code == 400


async def test_patch_null_clears_field(
    client: AsyncClient, auth_headers: dict, company: dict, scheduled: list, db_session
):
    await client.post(_url(company), headers=auth_headers)
    await _finish(db_session, executive_summary="Summary", threats=[{"title": "Tariffs", "description": "Steel"}])

    response = await client.patch(_url(company), json={"threats": None}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["threats"] is None
    assert response.json()["executive_summary"] == "Summary"


async def test_patch_while_running_conflicts(client: AsyncClient, auth_headers: dict, company: dict, scheduled: list):
    await client.post(_url(company), headers=auth_headers)

    response = await client.patch(_url(company), json={"executive_summary": "x"}, headers=auth_headers)
    assert response.status_code == 409


async def test_patch_without_research(client: AsyncClient, auth_headers: dict, company: dict):
    response = await client.patch(_url(company), json={"executive_summary": "x"}, headers=auth_headers)
    assert response.status_code == 404


async def test_full_run_through_background_task(client: AsyncClient, auth_headers: dict, company: dict):
    """With no provider keys configured every stage fails locally and the run still completes."""
    response = await client.post(_url(company), headers=auth_headers)
    assert response.status_code == 202

    latest = (await client.get(_url(company), headers=auth_headers)).json()
    assert latest["status"] == "COMPLETED"
    statuses = {(e["step"], e["status"]) for e in latest["progress"]}
    assert ("Web Search", "failed") in statuses
    assert ("AI Analysis", "failed") in statuses
    assert latest["progress"][-1]["step"] == "Finalizing"
