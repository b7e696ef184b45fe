"""End-to-end tests through the FastAPI app using httpx's ASGI transport."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from lexvault.main import PROBLEM_CONTENT_TYPE, create_app
from tests.helpers import WINDOWS_EXECUTABLE

PASSWORD = "Correct-Horse-42"


@pytest_asyncio.fixture
async def client(services):
    app = create_app(services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _register(client: AsyncClient, email: str) -> dict:
    response = await client.post(
        "/api/auth/register",
        json={"email": email, "password": PASSWORD, "display_name": "Counsel"},
    )
    assert response.status_code == 201
    return response.json()


@pytest_asyncio.fixture
async def auth_headers(client) -> dict[str, str]:
    body = await _register(client, "owner@firm.example")
    return {"Authorization": f"Bearer {body['tokens']['access_token']}"}


async def _upload(client, headers, jurisdiction_ids, content=b"Lease terms.", filename="lease.txt"):
    return await client.post(
        "/api/documents",
        headers=headers,
        files={"file": (filename, content, "text/plain")},
        data={
            "title": "Lease",
            "tags": ["lease", "draft"],
            "jurisdiction_ids": [str(jurisdiction_ids["BC"]), str(jurisdiction_ids["BC-VANCOUVER"])],
        },
    )


@pytest.mark.asyncio
async def test_health_reports_components(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert set(body["checks"]) == {"database", "blob_store"}


# =============================================================================
# Auth
# =============================================================================


@pytest.mark.asyncio
async def test_register_login_refresh_logout(client) -> None:
    await _register(client, "partner@firm.example")

    login = await client.post(
        "/api/auth/login", json={"email": "partner@firm.example", "password": PASSWORD}
    )
    assert login.status_code == 200
    refresh_token = login.json()["tokens"]["refresh_token"]

    rotated = await client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
    assert rotated.status_code == 200
    assert rotated.json()["token_type"] == "bearer"

    reused = await client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
    assert reused.status_code == 401
    assert reused.json()["code"] == "TOKEN_REUSED"

    logout = await client.post(
        "/api/auth/logout", json={"refresh_token": rotated.json()["refresh_token"]}
    )
    assert logout.status_code == 204


@pytest.mark.asyncio
async def test_bad_login_is_problem_document(client) -> None:
    response = await client.post(
        "/api/auth/login", json={"email": "nobody@firm.example", "password": PASSWORD}
    )

    assert response.status_code == 401
    assert response.headers["content-type"].startswith(PROBLEM_CONTENT_TYPE)
    assert response.json()["code"] == "AUTHENTICATION_FAILED"


@pytest.mark.asyncio
async def test_weak_password_is_validation_error(client) -> None:
    response = await client.post(
        "/api/auth/register",
        json={"email": "weak@firm.example", "password": "short", "display_name": "Weak"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["context"]["errors"][0]["field"] == "password"


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client) -> None:
    response = await client.get("/api/documents", headers={"X-Request-ID": "trace-123"})

    assert response.status_code == 401
    assert response.headers["X-Request-ID"] == "trace-123"
    body = response.json()
    assert body["code"] == "AUTHENTICATION_FAILED"
    assert body["instance"] == "/api/documents"


@pytest.mark.asyncio
async def test_garbage_token_is_rejected(client) -> None:
    response = await client.get("/api/documents", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_INVALID"


# =============================================================================
# Documents
# =============================================================================


@pytest.mark.asyncio
async def test_document_lifecycle(client, auth_headers, jurisdiction_ids) -> None:
    created = await _upload(client, auth_headers, jurisdiction_ids)
    assert created.status_code == 201
    document = created.json()
    assert document["tags"] == ["lease", "draft"]
    assert document["file_kind"] == "txt"
    assert [j["code"] for j in document["jurisdictions"]] == ["BC", "BC-VANCOUVER"]
    url = f"/api/documents/{document['id']}"

    listed = await client.get("/api/documents", headers=auth_headers, params={"search": "lease"})
    assert listed.status_code == 200
    assert listed.json()["pagination"]["total"] == 1

    patched = await client.patch(url, headers=auth_headers, json={"title": "Signed lease"})
    assert patched.status_code == 200
    assert patched.json()["title"] == "Signed lease"

    downloaded = await client.get(f"{url}/download", headers=auth_headers)
    assert downloaded.status_code == 200
    assert downloaded.content == b"Lease terms."
    assert downloaded.headers["content-type"].startswith("text/plain")
    assert "filename*=UTF-8''lease.txt" in downloaded.headers["content-disposition"]

    deleted = await client.delete(url, headers=auth_headers)
    assert deleted.status_code == 204

    gone = await client.get(url, headers=auth_headers)
    assert gone.status_code == 404
    assert gone.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_disguised_executable_is_415(client, auth_headers, jurisdiction_ids) -> None:
    response = await _upload(
        client, auth_headers, jurisdiction_ids, content=WINDOWS_EXECUTABLE, filename="report.pdf"
    )

    assert response.status_code == 415
    assert response.headers["content-type"].startswith(PROBLEM_CONTENT_TYPE)
    assert response.json()["code"] == "UNSUPPORTED_FILE_TYPE"


@pytest.mark.asyncio
async def test_malformed_jurisdiction_id_is_validation_error(client, auth_headers) -> None:
    response = await client.post(
        "/api/documents",
        headers=auth_headers,
        files={"file": ("a.txt", b"text", "text/plain")},
        data={"title": "A", "jurisdiction_ids": ["not-a-uuid"]},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_other_users_document_is_404(client, auth_headers, jurisdiction_ids) -> None:
    created = await _upload(client, auth_headers, jurisdiction_ids)
    intruder = await _register(client, "intruder@elsewhere.example")
    headers = {"Authorization": f"Bearer {intruder['tokens']['access_token']}"}

    response = await client.get(f"/api/documents/{created.json()['id']}", headers=headers)

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invalid_page_is_validation_error(client, auth_headers) -> None:
    response = await client.get("/api/documents", headers=auth_headers, params={"page": 0})
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


# =============================================================================
# Jurisdictions
# =============================================================================


@pytest.mark.asyncio
async def test_jurisdiction_tree_and_detail(client, jurisdiction_ids) -> None:
    tree = await client.get("/api/jurisdictions")
    assert tree.status_code == 200
    (root,) = tree.json()
    assert root["code"] == "CA"
    assert [c["code"] for c in root["children"]] == ["BC", "ON"]

    detail = await client.get(f"/api/jurisdictions/{jurisdiction_ids['BC-VANCOUVER']}")
    assert detail.status_code == 200
    assert detail.json()["parent"]["code"] == "BC"
