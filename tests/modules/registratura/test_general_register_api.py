from datetime import date

import pytest
from httpx import AsyncClient

from src.core.auth.models import UserRole
from src.core.config import settings
from src.modules.registratura import numbering
from src.modules.registratura.numbering import AllocatedNumber

BASE_URL = "/api/v1/registratura"


async def _create_register(client: AsyncClient, headers: dict, **payload) -> int:
    payload.setdefault("name", "Registrul general")
    response = await client.post(f"{BASE_URL}/register-configurations", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["id"]


async def _register(client: AsyncClient, headers: dict, register_id: int, **payload):
    body = {
        "register_configuration_id": register_id,
        "document_type": "incoming",
        "subject": "Cerere adeverinta",
    }
    body.update(payload)
    return await client.post(f"{BASE_URL}/general-register", json=body, headers=headers)


class TestGeneralRegisterEndpoints:
    """Tests for /registratura/general-register endpoints."""

    async def test_register_and_get(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)

        response = await _register(client, headers, register_id, sender="Maria Ionescu")

        assert response.status_code == 201, response.text
        body = response.json()
        year = date.today().year
        assert body["data"]["document_number"] == 1
        assert body["data"]["registration_number"] == f"1/{year}"
        assert body["data"]["registration_date"] == date.today().isoformat()
        assert body["message"] == f"Document registered with number 1/{year}"

        document_id = body["data"]["id"]
        response = await client.get(f"{BASE_URL}/general-register/{document_id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["sender"] == "Maria Ionescu"

    async def test_client_cannot_choose_number(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers, starting_number=7)

        response = await _register(client, headers, register_id, document_number=1, year=1999)

        assert response.status_code == 201
        assert response.json()["data"]["document_number"] == 7
        assert response.json()["data"]["year"] == date.today().year

    async def test_list_filters(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)
        await _register(client, headers, register_id, subject="Cerere botez")
        await _register(client, headers, register_id, document_type="outgoing", subject="Raspuns")
        await _register(client, headers, register_id, subject="Cerere cununie")

        response = await client.get(
            f"{BASE_URL}/general-register",
            params={"document_type": "incoming", "search": "cerere"},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2
        assert [item["document_number"] for item in data["items"]] == [3, 1]

    async def test_missing_register_is_404(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)

        response = await _register(client, headers, 999)

        assert response.status_code == 404
        assert response.json()["success"] is False

    async def test_invalid_payload_is_422(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)

        response = await _register(client, headers, register_id, subject="   ")
        assert response.status_code == 422

        response = await _register(client, headers, register_id, document_type="memo")
        assert response.status_code == 422

        response = await client.get(f"{BASE_URL}/general-register/not-a-number", headers=headers)
        assert response.status_code == 422

    async def test_contention_is_409(
        self, client: AsyncClient, admin_user, auth_headers, monkeypatch
    ):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)
        first = await _register(client, headers, register_id)
        taken = first.json()["data"]

        async def always_taken(session, register_config_id, year=None):
            return AllocatedNumber(
                document_number=taken["document_number"],
                year=taken["year"],
                scope_year=taken["year"],
            )

        monkeypatch.setattr(numbering, "allocate_document_number", always_taken)
        monkeypatch.setattr(settings, "register_number_backoff_base_ms", 0)

        response = await _register(client, headers, register_id)

        assert response.status_code == 409
        assert response.json()["success"] is False

        monkeypatch.undo()
        response = await client.get(f"{BASE_URL}/general-register", headers=headers)
        assert response.json()["data"]["total"] == 1

    async def test_resubmit_with_idempotency_key(
        self, client: AsyncClient, admin_user, auth_headers
    ):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)

        first = await _register(client, headers, register_id, idempotency_key="submit-1")
        second = await _register(client, headers, register_id, idempotency_key="submit-1")

        assert first.json()["data"]["id"] == second.json()["data"]["id"]

    async def test_user_role_is_read_only(self, client: AsyncClient, make_user, auth_headers):
        reader = await make_user(UserRole.USER)
        headers = await auth_headers(reader)

        response = await _register(client, headers, 1)
        assert response.status_code == 403

        response = await client.get(f"{BASE_URL}/general-register", headers=headers)
        assert response.status_code == 200

    async def test_unauthenticated(self, client: AsyncClient):
        response = await client.get(f"{BASE_URL}/general-register")
        assert response.status_code in (401, 403)

    async def test_other_parish_is_forbidden(
        self, client: AsyncClient, admin_user, make_user, auth_headers
    ):
        admin_headers = await auth_headers(admin_user)
        parish = await client.post(
            "/api/v1/parishes", json={"name": "Parohia A", "code": "PA"}, headers=admin_headers
        )
        other = await client.post(
            "/api/v1/parishes", json={"name": "Parohia B", "code": "PB"}, headers=admin_headers
        )
        other_register = await _create_register(
            client, admin_headers, parish_id=other.json()["data"]["id"]
        )
        secretary = await make_user(UserRole.SECRETARY, parish_id=parish.json()["data"]["id"])
        headers = await auth_headers(secretary)

        response = await _register(client, headers, other_register)

        assert response.status_code == 403

    async def test_resolve_and_history(self, client: AsyncClient, make_user, admin_user, auth_headers):
        admin_headers = await auth_headers(admin_user)
        register_id = await _create_register(client, admin_headers)
        secretary = await make_user(UserRole.SECRETARY)
        headers = await auth_headers(secretary)
        created = await _register(client, headers, register_id)
        document_id = created.json()["data"]["id"]

        response = await client.put(
            f"{BASE_URL}/general-register/{document_id}",
            json={"status": "in_work"},
            headers=headers,
        )
        assert response.status_code == 200

        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/resolve",
            json={"resolution_status": "approved", "resolution": "Aprobat"},
            headers=headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["data"]["status"] == "resolved"

        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/cancel", json={}, headers=headers
        )
        assert response.status_code == 200

        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/cancel", json={}, headers=headers
        )
        assert response.status_code == 400

        response = await client.get(
            f"{BASE_URL}/general-register/{document_id}/history", headers=headers
        )
        assert response.status_code == 200
        actions = [entry["action"] for entry in response.json()["data"]]
        assert actions == ["REGISTER_DOCUMENT", "UPDATE", "RESOLVE_DOCUMENT", "CANCEL"]

    async def test_status_cannot_be_closed_by_update(
        self, client: AsyncClient, admin_user, auth_headers
    ):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)
        created = await _register(client, headers, register_id)

        response = await client.put(
            f"{BASE_URL}/general-register/{created.json()['data']['id']}",
            json={"status": "resolved"},
            headers=headers,
        )

        assert response.status_code == 422

    @pytest.mark.parametrize("year", [None, 2026])
    async def test_export(self, client: AsyncClient, admin_user, auth_headers, year):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)
        await _register(client, headers, register_id)

        params = {"year": year} if year else {}
        response = await client.get(
            f"{BASE_URL}/general-register/export", params=params, headers=headers
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert "attachment" in response.headers["content-disposition"]
        assert response.content[:2] == b"PK"

    @pytest.mark.parametrize("field", ["subject", "document_type", "status"])
    async def test_null_for_required_field_is_422(
        self, client: AsyncClient, admin_user, auth_headers, field
    ):
        headers = await auth_headers(admin_user)
        register_id = await _create_register(client, headers)
        created = await _register(client, headers, register_id)
        document_id = created.json()["data"]["id"]

        response = await client.put(
            f"{BASE_URL}/general-register/{document_id}", json={field: None}, headers=headers
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == field

        response = await client.get(f"{BASE_URL}/general-register/{document_id}", headers=headers)
        assert response.json()["data"]["subject"] == "Cerere adeverinta"
        assert response.json()["data"]["status"] == "draft"
