"""Company tasks and notes."""
from httpx import AsyncClient


async def test_task_defaults_and_ordering(client: AsyncClient, auth_headers: dict, company: dict):
    url = f"/api/v1/companies/{company['id']}/tasks"

    first = await client.post(url, json={"title": "  Call CFO  "}, headers=auth_headers)
    assert first.status_code == 201
    assert first.json()["title"] == "Call CFO"
    assert first.json()["status"] == "TODO"
    assert first.json()["priority"] == "MEDIUM"

    await client.post(url, json={"title": "Send deck", "priority": "HIGH"}, headers=auth_headers)

    response = await client.get(url, headers=auth_headers)
    assert [t["title"] for t in response.json()] == ["Send deck", "Call CFO"]


async def test_task_validation(client: AsyncClient, auth_headers: dict, company: dict):
    url = f"/api/v1/companies/{company['id']}/tasks"
    assert (await client.post(url, json={"title": ""}, headers=auth_headers)).status_code == 422
    assert (await client.post(url, json={"title": "x", "status": "DONE"}, headers=auth_headers)).status_code == 422


async def test_task_update_and_delete(client: AsyncClient, auth_headers: dict, company: dict):
    url = f"/api/v1/companies/{company['id']}/tasks"
    task = (await client.post(url, json={"title": "Call CFO"}, headers=auth_headers)).json()

    response = await client.patch(f"{url}/{task['id']}", json={"status": "COMPLETED"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"
    assert response.json()["title"] == "Call CFO"

    response = await client.patch(f"{url}/{task['id']}", json={"title": None}, headers=auth_headers)
    assert response.status_code == 400

    assert (await client.delete(f"{url}/{task['id']}", headers=auth_headers)).status_code == 200
    assert (await client.delete(f"{url}/{task['id']}", headers=auth_headers)).status_code == 404


async def test_task_from_another_company_is_not_found(client: AsyncClient, auth_headers: dict, company: dict):
    other = (await client.post("/api/v1/companies", json={"name": "Globex"}, headers=auth_headers)).json()
    task = (
        await client.post(f"/api/v1/companies/{company['id']}/tasks", json={"title": "x"}, headers=auth_headers)
    ).json()

    response = await client.patch(
        f"/api/v1/companies/{other['id']}/tasks/{task['id']}", json={"title": "y"}, headers=auth_headers
    )
    assert response.status_code == 404


async def test_notes_crud(client: AsyncClient, auth_headers: dict, company: dict):
    url = f"/api/v1/companies/{company['id']}/notes"

    created = await client.post(url, json={"title": "Intro call", "content": "Met the CEO"}, headers=auth_headers)
    assert created.status_code == 201
    note = created.json()

    response = await client.patch(f"{url}/{note['id']}", json={"content": "Met the CEO and CFO"}, headers=auth_headers)
    assert response.json()["content"] == "Met the CEO and CFO"
    assert response.json()["title"] == "Intro call"

    listed = await client.get(url, headers=auth_headers)
    assert [n["id"] for n in listed.json()] == [note["id"]]

    assert (await client.delete(f"{url}/{note['id']}", headers=auth_headers)).status_code == 200
    assert (await client.get(url, headers=auth_headers)).json() == []


async def test_notes_of_foreign_company(client: AsyncClient, company: dict, other_auth_headers: dict):
    response = await client.get(f"/api/v1/companies/{company['id']}/notes", headers=other_auth_headers)
    assert response.status_code == 404
