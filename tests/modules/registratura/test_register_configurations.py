import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.models import UserRole
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.parishes.schemas import ParishCreate, ParishUpdate
from src.modules.parishes.service import ParishService
from src.modules.registratura.models import DocumentType
from src.modules.registratura.numbering import allocate_document_number
from src.modules.registratura.schemas import (
    RegisterConfigurationCreate,
    RegisterConfigurationUpdate,
    RegisteredDocumentCreate,
)
from src.modules.registratura.service import (
    GeneralRegisterService,
    RegisterConfigurationService,
)


class TestRegisterConfigurationService:
    """Tests for RegisterConfigurationService."""

    async def test_create_configuration(self, db_session: AsyncSession, admin_user):
        service = RegisterConfigurationService(db_session)

        config = await service.create_configuration(
            RegisterConfigurationCreate(name="  Registrul general  ", starting_number=5),
            created_by_id=admin_user.id,
        )

        assert config.id is not None
        assert config.name == "Registrul general"
        assert config.resets_annually is True
        assert config.starting_number == 5
        assert config.parish_id is None

    async def test_create_for_missing_parish(self, db_session: AsyncSession, admin_user):
        service = RegisterConfigurationService(db_session)

        with pytest.raises(NotFoundError):
            await service.create_configuration(
                RegisterConfigurationCreate(name="Registru", parish_id=404),
                created_by_id=admin_user.id,
            )

    async def test_change_numbering_before_first_document(
        self, db_session: AsyncSession, admin_user
    ):
        """Counters seeded under the old rules are dropped."""
        service = RegisterConfigurationService(db_session)
        config = await service.create_configuration(
            RegisterConfigurationCreate(name="Registru"), created_by_id=admin_user.id
        )
        await allocate_document_number(db_session, config.id, year=2026)

        updated = await service.update_configuration(
            config.id, RegisterConfigurationUpdate(starting_number=500), updated_by_id=admin_user.id
        )
        allocated = await allocate_document_number(db_session, config.id, year=2026)

        assert updated.starting_number == 500
        assert updated.updated_by_id == admin_user.id
        assert allocated.document_number == 500

    async def test_numbering_locked_once_documents_exist(
        self, db_session: AsyncSession, admin_user
    ):
        service = RegisterConfigurationService(db_session)
        config = await service.create_configuration(
            RegisterConfigurationCreate(name="Registru"), created_by_id=admin_user.id
        )
        await GeneralRegisterService(db_session).register_document(
            RegisteredDocumentCreate(
                register_configuration_id=config.id,
                document_type=DocumentType.INTERNAL,
                subject="Proces verbal",
            ),
            admin_user.id,
        )

        with pytest.raises(ValidationError):
            await service.update_configuration(
                config.id,
                RegisterConfigurationUpdate(resets_annually=False),
                updated_by_id=admin_user.id,
            )

        renamed = await service.update_configuration(
            config.id, RegisterConfigurationUpdate(name="Registru intrari"), updated_by_id=admin_user.id
        )
        assert renamed.name == "Registru intrari"

        with pytest.raises(ValidationError):
            await service.delete_configuration(config.id, deleted_by_id=admin_user.id)

    async def test_parish_locked_once_documents_exist(self, db_session: AsyncSession, admin_user):
        """Registered documents keep the parish they were registered under."""
        parishes = ParishService(db_session)
        first = await parishes.create_parish(
            ParishCreate(name="Parohia A", code="PA"), created_by_id=admin_user.id
        )
        second = await parishes.create_parish(
            ParishCreate(name="Parohia B", code="PB"), created_by_id=admin_user.id
        )
        service = RegisterConfigurationService(db_session)
        config = await service.create_configuration(
            RegisterConfigurationCreate(name="Registru", parish_id=first.id),
            created_by_id=admin_user.id,
        )

        moved = await service.update_configuration(
            config.id, RegisterConfigurationUpdate(parish_id=second.id), updated_by_id=admin_user.id
        )
        assert moved.parish_id == second.id

        await GeneralRegisterService(db_session).register_document(
            RegisteredDocumentCreate(
                register_configuration_id=config.id,
                document_type=DocumentType.INCOMING,
                subject="Cerere",
            ),
            admin_user.id,
        )

        with pytest.raises(ValidationError) as exc_info:
            await service.update_configuration(
                config.id, RegisterConfigurationUpdate(parish_id=first.id), updated_by_id=admin_user.id
            )
        assert exc_info.value.details["field"] == "parish_id"

        unchanged = await service.update_configuration(
            config.id, RegisterConfigurationUpdate(parish_id=second.id), updated_by_id=admin_user.id
        )
        assert unchanged.parish_id == second.id

    async def test_delete_unused_configuration(self, db_session: AsyncSession, admin_user):
        service = RegisterConfigurationService(db_session)
        config = await service.create_configuration(
            RegisterConfigurationCreate(name="Registru"), created_by_id=admin_user.id
        )
        await allocate_document_number(db_session, config.id, year=2026)

        await service.delete_configuration(config.id, deleted_by_id=admin_user.id)

        with pytest.raises(NotFoundError):
            await service.get_by_id(config.id)

    async def test_create_for_parishes(self, db_session: AsyncSession, admin_user):
        parishes = ParishService(db_session)
        with_register = await parishes.create_parish(
            ParishCreate(name="Parohia A", code="PA"), created_by_id=admin_user.id
        )
        without_register = await parishes.create_parish(
            ParishCreate(name="Parohia B", code="PB"), created_by_id=admin_user.id
        )
        inactive = await parishes.create_parish(
            ParishCreate(name="Parohia C", code="PC"), created_by_id=admin_user.id
        )
        await parishes.update_parish(
            inactive.id, ParishUpdate(is_active=False), updated_by_id=admin_user.id
        )
        service = RegisterConfigurationService(db_session)
        await service.create_configuration(
            RegisterConfigurationCreate(name="Registru A", parish_id=with_register.id),
            created_by_id=admin_user.id,
        )

        created, skipped = await service.create_for_parishes(created_by_id=admin_user.id)

        assert [c.parish_id for c in created] == [without_register.id]
        assert created[0].name == "Registrul general - Parohia B"
        assert skipped == 1

        created_again, skipped_again = await service.create_for_parishes(
            created_by_id=admin_user.id
        )
        assert created_again == []
        assert skipped_again == 2


class TestRegisterConfigurationEndpoints:
    """Tests for /registratura/register-configurations endpoints."""

    async def test_create_get_and_preview(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)

        response = await client.post(
            "/api/v1/registratura/register-configurations",
            json={"name": "Registrul general", "starting_number": 20},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        config_id = response.json()["data"]["id"]

        response = await client.get(
            f"/api/v1/registratura/register-configurations/{config_id}", headers=headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["starting_number"] == 20

        for _ in range(2):
            response = await client.get(
                f"/api/v1/registratura/register-configurations/{config_id}/next-number",
                params={"year": 2026},
                headers=headers,
            )
            assert response.status_code == 200
            assert response.json()["data"] == {
                "register_configuration_id": config_id,
                "document_number": 20,
                "year": 2026,
            }

    async def test_invalid_starting_number(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)

        response = await client.post(
            "/api/v1/registratura/register-configurations",
            json={"name": "Registru", "starting_number": 0},
            headers=headers,
        )

        assert response.status_code == 422

    async def test_missing_configuration(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)

        response = await client.get(
            "/api/v1/registratura/register-configurations/999", headers=headers
        )

        assert response.status_code == 404

    async def test_secretary_cannot_manage(self, client: AsyncClient, make_user, auth_headers):
        secretary = await make_user(UserRole.SECRETARY)
        headers = await auth_headers(secretary)

        response = await client.post(
            "/api/v1/registratura/register-configurations",
            json={"name": "Registru"},
            headers=headers,
        )
        assert response.status_code == 403

        response = await client.get(
            "/api/v1/registratura/register-configurations", headers=headers
        )
        assert response.status_code == 200

    async def test_delete(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        response = await client.post(
            "/api/v1/registratura/register-configurations",
            json={"name": "Registru"},
            headers=headers,
        )
        config_id = response.json()["data"]["id"]

        response = await client.delete(
            f"/api/v1/registratura/register-configurations/{config_id}", headers=headers
        )
        assert response.status_code == 200

        response = await client.get(
            f"/api/v1/registratura/register-configurations/{config_id}", headers=headers
        )
        assert response.status_code == 404

    async def test_bulk_create_for_parishes(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        await client.post(
            "/api/v1/parishes", json={"name": "Parohia A", "code": "PA"}, headers=headers
        )

        response = await client.post(
            "/api/v1/registratura/register-configurations/for-parishes", headers=headers
        )

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["created"] == 1
        assert data["skipped"] == 0
        assert data["register_configurations"][0]["parish"]["code"] == "PA"

    @pytest.mark.parametrize("field", ["name", "starting_number", "resets_annually"])
    async def test_null_for_required_field_is_422(
        self, client: AsyncClient, admin_user, auth_headers, field
    ):
        headers = await auth_headers(admin_user)
        response = await client.post(
            "/api/v1/registratura/register-configurations",
            json={"name": "Registru", "starting_number": 3},
            headers=headers,
        )
        config_id = response.json()["data"]["id"]

        response = await client.put(
            f"/api/v1/registratura/register-configurations/{config_id}",
            json={field: None},
            headers=headers,
        )

        assert response.status_code == 422
        response = await client.get(
            f"/api/v1/registratura/register-configurations/{config_id}/next-number",
            params={"year": 2026},
            headers=headers,
        )
        assert response.json()["data"]["document_number"] == 3
