from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.models import UserRole
from src.core.exceptions import InvalidStateError, ValidationError
from src.modules.parishes.schemas import ParishCreate
from src.modules.parishes.service import ParishService
from src.modules.registratura.models import (
    DocumentStatus,
    DocumentType,
    ResolutionStatus,
    StepStatus,
    WorkflowAction,
)
from src.modules.registratura.schemas import (
    RegisterConfigurationCreate,
    RegisteredDocumentCreate,
    WorkflowRoute,
)
from src.modules.registratura.service import (
    GeneralRegisterService,
    RegisterConfigurationService,
)

BASE_URL = "/api/v1/registratura"


async def _registered(db_session: AsyncSession, user_id: int, parish_id: int | None = None):
    register = await RegisterConfigurationService(db_session).create_configuration(
        RegisterConfigurationCreate(name="Registrul general", parish_id=parish_id),
        created_by_id=user_id,
    )
    return await GeneralRegisterService(db_session).register_document(
        RegisteredDocumentCreate(
            register_configuration_id=register.id,
            document_type=DocumentType.INCOMING,
            subject="Cerere certificat de botez",
        ),
        user_id,
        registration_date=date(2026, 3, 2),
    )


class TestRouteDocument:
    """Tests for GeneralRegisterService.route_document."""

    async def test_first_hand_over_distributes_draft(
        self, db_session: AsyncSession, admin_user, make_user
    ):
        colleague = await make_user(UserRole.SECRETARY, email="preot@parish.test")
        document = await _registered(db_session, admin_user.id)
        service = GeneralRegisterService(db_session)

        step = await service.route_document(
            document.id,
            WorkflowRoute(to_user_id=colleague.id, action=WorkflowAction.SENT, notes="Spre rezolvare"),
            from_user_id=admin_user.id,
        )

        assert step.id is not None
        assert step.parent_step_id is None
        assert step.from_user_id == admin_user.id
        assert step.to_user_id == colleague.id
        assert step.step_status == StepStatus.PENDING.value
        assert step.completed_at is None

        document = await service.get_by_id(document.id)
        assert document.status == DocumentStatus.DISTRIBUTED.value
        assert document.document_number == 1

    async def test_forward_completes_received_step(
        self, db_session: AsyncSession, admin_user, make_user
    ):
        colleague = await make_user(UserRole.SECRETARY, email="preot@parish.test")
        secretary = await make_user(UserRole.SECRETARY, email="secretar@parish.test")
        document = await _registered(db_session, admin_user.id)
        service = GeneralRegisterService(db_session)

        received = await service.route_document(
            document.id,
            WorkflowRoute(to_user_id=colleague.id, action=WorkflowAction.SENT),
            from_user_id=admin_user.id,
        )
        forwarded = await service.route_document(
            document.id,
            WorkflowRoute(
                to_user_id=secretary.id,
                action=WorkflowAction.FORWARDED,
                parent_step_id=received.id,
            ),
            from_user_id=colleague.id,
        )

        steps, tree = await service.get_workflow_tree(document.id)

        assert [s.id for s in steps] == [received.id, forwarded.id]
        assert steps[0].step_status == StepStatus.COMPLETED.value
        assert steps[0].completed_at is not None
        assert steps[1].step_status == StepStatus.PENDING.value
        assert len(tree) == 1
        assert tree[0].id == received.id
        assert [child.id for child in tree[0].children] == [forwarded.id]
        assert tree[0].children[0].children == []

    async def test_recipient_must_exist(self, db_session: AsyncSession, admin_user):
        document = await _registered(db_session, admin_user.id)
        service = GeneralRegisterService(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await service.route_document(
                document.id,
                WorkflowRoute(to_user_id=9999, action=WorkflowAction.SENT),
                from_user_id=admin_user.id,
            )

        assert exc_info.value.details["field"] == "to_user_id"
        steps, _ = await service.get_workflow_tree(document.id)
        assert steps == []

    async def test_recipient_from_other_parish(
        self, db_session: AsyncSession, admin_user, make_user
    ):
        parishes = ParishService(db_session)
        own = await parishes.create_parish(
            ParishCreate(name="Parohia A", code="PA"), created_by_id=admin_user.id
        )
        other = await parishes.create_parish(
            ParishCreate(name="Parohia B", code="PB"), created_by_id=admin_user.id
        )
        stranger = await make_user(UserRole.SECRETARY, email="preot@b.test", parish_id=other.id)
        document = await _registered(db_session, admin_user.id, parish_id=own.id)

        with pytest.raises(ValidationError):
            await GeneralRegisterService(db_session).route_document(
                document.id,
                WorkflowRoute(to_user_id=stranger.id, action=WorkflowAction.SENT),
                from_user_id=admin_user.id,
            )

    async def test_parent_step_of_other_document(
        self, db_session: AsyncSession, admin_user, make_user
    ):
        colleague = await make_user(UserRole.SECRETARY, email="preot@parish.test")
        first = await _registered(db_session, admin_user.id)
        second = await _registered(db_session, admin_user.id)
        service = GeneralRegisterService(db_session)
        foreign_step = await service.route_document(
            first.id,
            WorkflowRoute(to_user_id=colleague.id, action=WorkflowAction.SENT),
            from_user_id=admin_user.id,
        )

        with pytest.raises(ValidationError) as exc_info:
            await service.route_document(
                second.id,
                WorkflowRoute(
                    to_user_id=admin_user.id,
                    action=WorkflowAction.RETURNED,
                    parent_step_id=foreign_step.id,
                ),
                from_user_id=colleague.id,
            )

        assert exc_info.value.details["field"] == "parent_step_id"

    async def test_closed_document_cannot_be_routed(
        self, db_session: AsyncSession, admin_user, make_user
    ):
        colleague = await make_user(UserRole.SECRETARY, email="preot@parish.test")
        document = await _registered(db_session, admin_user.id)
        service = GeneralRegisterService(db_session)
        await service.cancel_document(document.id, cancelled_by_id=admin_user.id)

        with pytest.raises(InvalidStateError):
            await service.route_document(
                document.id,
                WorkflowRoute(to_user_id=colleague.id, action=WorkflowAction.SENT),
                from_user_id=admin_user.id,
            )

    async def test_pending_recipient_can_resolve(self, db_session: AsyncSession, make_user):
        creator = await make_user(UserRole.SECRETARY, email="creator@parish.test")
        recipient = await make_user(UserRole.SECRETARY, email="recipient@parish.test")
        document = await _registered(db_session, creator.id)
        service = GeneralRegisterService(db_session)
        await service.route_document(
            document.id,
            WorkflowRoute(to_user_id=recipient.id, action=WorkflowAction.SENT),
            from_user_id=creator.id,
        )

        resolved = await service.resolve_document(
            document.id,
            resolution_status=ResolutionStatus.APPROVED,
            resolution="Aprobat",
            resolved_by_id=recipient.id,
            can_resolve_any=False,
        )

        assert resolved.status == DocumentStatus.RESOLVED.value
        assert resolved.resolved_by_id == recipient.id


class TestWorkflowEndpoints:
    """Tests for /registratura/general-register/{id}/workflow."""

    async def _document_id(self, client: AsyncClient, headers: dict) -> int:
        response = await client.post(
            f"{BASE_URL}/register-configurations", json={"name": "Registru"}, headers=headers
        )
        register_id = response.json()["data"]["id"]
        response = await client.post(
            f"{BASE_URL}/general-register",
            json={
                "register_configuration_id": register_id,
                "document_type": "incoming",
                "subject": "Cerere",
            },
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]["id"]

    async def test_route_and_read_tree(
        self, client: AsyncClient, admin_user, make_user, auth_headers
    ):
        colleague = await make_user(UserRole.SECRETARY, email="preot@parish.test")
        headers = await auth_headers(admin_user)
        document_id = await self._document_id(client, headers)

        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/workflow",
            json={"to_user_id": colleague.id, "action": "sent", "notes": "Spre rezolvare"},
            headers=headers,
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["message"] == "Document routed"
        assert body["data"]["step_status"] == "pending"
        step_id = body["data"]["id"]

        colleague_headers = await auth_headers(colleague)
        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/workflow",
            json={"to_user_id": admin_user.id, "action": "returned", "parent_step_id": step_id},
            headers=colleague_headers,
        )
        assert response.status_code == 201, response.text

        response = await client.get(
            f"{BASE_URL}/general-register/{document_id}/workflow", headers=headers
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert [s["step_status"] for s in data["steps"]] == ["completed", "pending"]
        assert data["tree"][0]["id"] == step_id
        assert data["tree"][0]["children"][0]["action"] == "returned"

        response = await client.get(f"{BASE_URL}/general-register/{document_id}", headers=headers)
        assert response.json()["data"]["status"] == "distributed"

        response = await client.get(
            f"{BASE_URL}/general-register/{document_id}/history", headers=headers
        )
        actions = [entry["action"] for entry in response.json()["data"]]
        assert actions == ["REGISTER_DOCUMENT", "ROUTE_DOCUMENT", "ROUTE_DOCUMENT"]

    async def test_invalid_action_is_422(self, client: AsyncClient, admin_user, auth_headers):
        headers = await auth_headers(admin_user)
        document_id = await self._document_id(client, headers)

        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/workflow",
            json={"to_user_id": admin_user.id, "action": "escalated"},
            headers=headers,
        )

        assert response.status_code == 422

    async def test_user_role_cannot_route(
        self, client: AsyncClient, admin_user, make_user, auth_headers
    ):
        document_id = await self._document_id(client, await auth_headers(admin_user))
        reader = await make_user(UserRole.USER)
        headers = await auth_headers(reader)

        response = await client.post(
            f"{BASE_URL}/general-register/{document_id}/workflow",
            json={"to_user_id": reader.id, "action": "sent"},
            headers=headers,
        )
        assert response.status_code == 403

        response = await client.get(
            f"{BASE_URL}/general-register/{document_id}/workflow", headers=headers
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"steps": [], "tree": []}
