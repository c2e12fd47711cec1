"""Company document uploads."""
from httpx import AsyncClient

from compass.config import get_settings
from compass.routers.documents import content_disposition


async def test_upload_list_download_delete(client: AsyncClient, auth_headers: dict, company: dict):
    url = f"/api/v1/companies/{company['id']}/documents"

    response = await client.post(
        url,
        files={"file": ("pitch.pdf", b"%PDF-1.4 fake", "application/pdf")},
        headers=auth_headers,
    )
    assert response.status_code == 201
    document = response.json()
    assert document["filename"] == "pitch.pdf"
    assert document["file_size"] == len(b"%PDF-1.4 fake")
    assert document["mime_type"] == "application/pdf"
    assert "file_content" not in document

    listed = await client.get(url, headers=auth_headers)
    assert [d["id"] for d in listed.json()] == [document["id"]]

    download = await client.get(f"{url}/{document['id']}/download", headers=auth_headers)
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 fake"
    assert "pitch.pdf" in download.headers["content-disposition"]

    assert (await client.delete(f"{url}/{document['id']}", headers=auth_headers)).status_code == 200
    missing = await client.get(f"{url}/{document['id']}/download", headers=auth_headers)
    assert missing.status_code == 404


async def test_empty_upload_rejected(client: AsyncClient, auth_headers: dict, company: dict):
    response = await client.post(
        f"/api/v1/companies/{company['id']}/documents",
        files={"file": ("empty.txt", b"", "text/plain")},
        headers=auth_headers,
    )
    assert response.status_code == 400


async def test_oversized_upload_rejected(client: AsyncClient, auth_headers: dict, company: dict, monkeypatch):
    settings = get_settings().model_copy(update={"max_upload_bytes": 10})
    monkeypatch.setattr("compass.routers.documents.get_settings", lambda: settings)

    response = await client.post(
        f"/api/v1/companies/{company['id']}/documents",
        files={"file": ("big.bin", b"x" * 11, "application/octet-stream")},
        headers=auth_headers,
    )
    assert response.status_code == 413


async def test_documents_of_foreign_company(client: AsyncClient, company: dict, other_auth_headers: dict):
    response = await client.post(
        f"/api/v1/companies/{company['id']}/documents",
        files={"file": ("a.txt", b"a", "text/plain")},
        headers=other_auth_headers,
    )
    assert response.status_code == 404


async def test_download_non_ascii_filename(client: AsyncClient, auth_headers: dict, company: dict):
    url = f"/api/v1/companies/{company['id']}/documents"
    document = (
        await client.post(url, files={"file": ("报告.pdf", b"%PDF", "application/pdf")}, headers=auth_headers)
    ).json()
    assert document["filename"] == "报告.pdf"

    download = await client.get(f"{url}/{document['id']}/download", headers=auth_headers)
    assert download.status_code == 200
    assert download.content == b"%PDF"
    header = download.headers["content-disposition"]
    assert header.startswith('attachment; filename="')
    assert "filename*=UTF-8''%E6%8A%A5%E5%91%8A.pdf" in header


def test_content_disposition_quotes_in_name():
    header = content_disposition('say "hi".txt')
    assert header == "attachment; filename=\"say _hi_.txt\"; filename*=UTF-8''say%20%22hi%22.txt"
