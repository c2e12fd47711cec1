"""Companies endpoint tests."""
from httpx import AsyncClient


class TestCompanies:
    async def test_create_company(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/companies",
            json={"name": "  Acme Corp  ", "website": "https://acme.example"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Acme Corp"
        assert data["website"] == "https://acme.example"

    async def test_create_requires_name(self, client: AsyncClient, auth_headers: dict):
        response = await client.post("/api/v1/companies", json={"name": "   "}, headers=auth_headers)
        assert response.status_code == 422

    async def test_duplicate_name_is_case_insensitive(self, client: AsyncClient, auth_headers: dict, company: dict):
        response = await client.post("/api/v1/companies", json={"name": "ACME CORP"}, headers=auth_headers)
        assert response.status_code == 409

    async def test_list_companies_in_creation_order(self, client: AsyncClient, auth_headers: dict):
        for name in ("First", "Second"):
            await client.post("/api/v1/companies", json={"name": name}, headers=auth_headers)

        response = await client.get("/api/v1/companies", headers=auth_headers)
        assert response.status_code == 200
        assert [c["name"] for c in response.json()] == ["First", "Second"]

    async def test_get_update_delete(self, client: AsyncClient, auth_headers: dict, company: dict):
        url = f"/api/v1/companies/{company['id']}"

        response = await client.get(url, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["name"] == "Acme Corp"

        response = await client.patch(url, json={"description": "Now with gadgets"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["description"] == "Now with gadgets"
        assert response.json()["name"] == "Acme Corp"

        response = await client.delete(url, headers=auth_headers)
        assert response.status_code == 200
        assert (await client.get(url, headers=auth_headers)).status_code == 404

    async def test_other_users_company_is_not_found(
        self, client: AsyncClient, company: dict, other_auth_headers: dict
    ):
        url = f"/api/v1/companies/{company['id']}"
        assert (await client.get(url, headers=other_auth_headers)).status_code == 404
        assert (await client.delete(url, headers=other_auth_headers)).status_code == 404

    async def test_malformed_id(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/companies/not-a-uuid", headers=auth_headers)
        assert response.status_code == 422

    async def test_delete_removes_children(self, client: AsyncClient, auth_headers: dict, company: dict, db_session):
        from sqlalchemy import func, select

        from compass.models import Note

        await client.post(
            f"/api/v1/companies/{company['id']}/notes", json={"title": "Call notes"}, headers=auth_headers
        )
        await client.delete(f"/api/v1/companies/{company['id']}", headers=auth_headers)

        assert await db_session.scalar(select(func.count()).select_from(Note)) == 0
