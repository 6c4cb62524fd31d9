import asyncio
import logging
import random
from datetime import date, datetime, timezone

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, create_audit_log
from src.core.auth.service import AuthService
from src.core.config import settings
from src.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.modules.parishes.models import Parish
from src.modules.parishes.service import ParishService
from src.modules.registratura import numbering
from src.modules.registratura.models import (
    DocumentStatus,
    RegisterConfiguration,
    RegisterCounter,
    RegisteredDocument,
    ResolutionStatus,
    StepStatus,
    WorkflowStep,
)
from src.modules.registratura.schemas import (
    RegisterConfigurationCreate,
    RegisterConfigurationUpdate,
    RegisteredDocumentCreate,
    RegisteredDocumentUpdate,
    WorkflowRoute,
    WorkflowStepNode,
)

logger = logging.getLogger(__name__)

NUMBER_COLLISION_MARKERS = (
    "uq_general_register_scope_number",
    "general_register.document_number",
)
IDEMPOTENCY_COLLISION_MARKERS = (
    "uq_general_register_idempotency_key",
    "general_register.idempotency_key",
)


def _error_text(exc: IntegrityError) -> str:
    return str(getattr(exc, "orig", exc)).lower()


def _is_number_collision(exc: IntegrityError) -> bool:
    text = _error_text(exc)
    return any(marker in text for marker in NUMBER_COLLISION_MARKERS)


def _is_idempotency_collision(exc: IntegrityError) -> bool:
    text = _error_text(exc)
    return any(marker in text for marker in IDEMPOTENCY_COLLISION_MARKERS)


def backoff_delay(attempt: int) -> float:
    """Full-jitter exponential backoff in seconds for the given (1-based) attempt."""
    cap = min(
        settings.register_number_backoff_max_ms,
        settings.register_number_backoff_base_ms * (2 ** (attempt - 1)),
    )
    return random.uniform(0, cap) / 1000


def _check_parish_scope(parish_id: int | None, parish_scope: int | None) -> None:
    if parish_scope is not None and parish_id != parish_scope:
        raise AuthorizationError("Register belongs to another parish")


class RegisterConfigurationService:
    """Service for register configurations (numbering scopes)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, config_id: int, parish_scope: int | None = None
    ) -> RegisterConfiguration:
        config = await numbering.get_register_configuration(self.session, config_id)
        _check_parish_scope(config.parish_id, parish_scope)
        return config

    async def list_configurations(self, parish_id: int | None = None) -> list[RegisterConfiguration]:
        stmt = select(RegisterConfiguration).order_by(RegisterConfiguration.name)
        if parish_id is not None:
            stmt = stmt.where(RegisterConfiguration.parish_id == parish_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _ensure_parish_exists(self, parish_id: int | None) -> None:
        if parish_id is None:
            return
        parish = await ParishService(self.session).get_parish_by_id(parish_id)
        if not parish:
            raise NotFoundError("Parish", parish_id)

    async def _has_documents(self, config_id: int) -> bool:
        stmt = (
            select(RegisteredDocument.id)
            .where(RegisteredDocument.register_configuration_id == config_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def create_configuration(
        self, data: RegisterConfigurationCreate, created_by_id: int
    ) -> RegisterConfiguration:
        await self._ensure_parish_exists(data.parish_id)

        config = RegisterConfiguration(
            name=data.name,
            parish_id=data.parish_id,
            resets_annually=data.resets_annually,
            starting_number=data.starting_number,
            notes=data.notes,
            created_by_id=created_by_id,
        )
        self.session.add(config)
        await self.session.flush()

        await create_audit_log(
            session=self.session,
            action=AuditAction.CREATE,
            entity_type="RegisterConfiguration",
            entity_id=config.id,
            user_id=created_by_id,
            entity_identifier=config.name,
            new_values={
                "name": config.name,
                "parish_id": config.parish_id,
                "resets_annually": config.resets_annually,
                "starting_number": config.starting_number,
            },
        )
        await self.session.refresh(config)
        return config

    async def update_configuration(
        self, config_id: int, data: RegisterConfigurationUpdate, updated_by_id: int
    ) -> RegisterConfiguration:
        """
        Update a register configuration.

        Changing the numbering rules of a register that already has documents
        would break the uniqueness of its numbers, so it is refused.
        """
        config = await numbering.get_register_configuration(self.session, config_id)
        changes = data.model_dump(exclude_unset=True)

        if "parish_id" in changes and changes["parish_id"] != config.parish_id:
            await self._ensure_parish_exists(changes["parish_id"])
            # Documents keep a copy of the register's parish
            if await self._has_documents(config.id):
                raise ValidationError(
                    "Parish cannot change once documents are registered", field="parish_id"
                )

        numbering_changed = any(
            field in changes and changes[field] != getattr(config, field)
            for field in ("resets_annually", "starting_number")
        )
        if numbering_changed:
            if await self._has_documents(config.id):
                raise ValidationError(
                    "Numbering rules cannot change once documents are registered",
                    field="starting_number" if "starting_number" in changes else "resets_annually",
                )
            # Counters seeded from the old rules no longer apply
            await self.session.execute(
                delete(RegisterCounter).where(RegisterCounter.register_configuration_id == config.id)
            )

        old_values = {field: getattr(config, field) for field in changes}
        for field, value in changes.items():
            setattr(config, field, value)
        config.updated_by_id = updated_by_id
        await self.session.flush()

        if changes:
            await create_audit_log(
                session=self.session,
                action=AuditAction.UPDATE,
                entity_type="RegisterConfiguration",
                entity_id=config.id,
                user_id=updated_by_id,
                entity_identifier=config.name,
                old_values=old_values,
                new_values=changes,
            )
        await self.session.refresh(config)
        return config

    async def delete_configuration(self, config_id: int, deleted_by_id: int) -> None:
        config = await numbering.get_register_configuration(self.session, config_id)
        if await self._has_documents(config.id):
            raise ValidationError(
                "Cannot delete register configuration: documents reference it",
                field="register_configuration_id",
            )

        await self.session.execute(
            delete(RegisterCounter).where(RegisterCounter.register_configuration_id == config.id)
        )
        await create_audit_log(
            session=self.session,
            action=AuditAction.DELETE,
            entity_type="RegisterConfiguration",
            entity_id=config.id,
            user_id=deleted_by_id,
            entity_identifier=config.name,
            old_values={"name": config.name, "parish_id": config.parish_id},
        )
        await self.session.delete(config)
        await self.session.flush()

    async def create_for_parishes(
        self, created_by_id: int
    ) -> tuple[list[RegisterConfiguration], int]:
        """
        Create a default register for every active parish that has none.

        Returns:
            Tuple of (created configurations, number of parishes skipped)
        """
        parishes_result = await self.session.execute(
            select(Parish).where(Parish.is_active.is_(True)).order_by(Parish.name)
        )
        parishes = list(parishes_result.scalars().all())

        existing_result = await self.session.execute(
            select(RegisterConfiguration.parish_id)
            .where(RegisterConfiguration.parish_id.is_not(None))
            .distinct()
        )
        with_register = set(existing_result.scalars().all())

        created: list[RegisterConfiguration] = []
        for parish in parishes:
            if parish.id in with_register:
                continue
            config = await self.create_configuration(
                RegisterConfigurationCreate(
                    name=f"{settings.default_register_name} - {parish.name}",
                    parish_id=parish.id,
                ),
                created_by_id=created_by_id,
            )
            created.append(config)

        return created, len(parishes) - len(created)


class GeneralRegisterService:
    """Service for registering documents in the general register."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, document_id: int, parish_scope: int | None = None
    ) -> RegisteredDocument:
        result = await self.session.execute(
            select(RegisteredDocument).where(RegisteredDocument.id == document_id)
        )
        document = result.scalar_one_or_none()
        if not document:
            raise NotFoundError("Document", document_id)
        _check_parish_scope(document.parish_id, parish_scope)
        return document

    async def get_by_idempotency_key(self, key: str) -> RegisteredDocument | None:
        result = await self.session.execute(
            select(RegisteredDocument).where(RegisteredDocument.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    def _filtered_query(
        self,
        register_configuration_id: int | None = None,
        parish_id: int | None = None,
        year: int | None = None,
        document_type: str | None = None,
        status: str | None = None,
        search: str | None = None,
    ):
        query = select(RegisteredDocument)
        if register_configuration_id is not None:
            query = query.where(
                RegisteredDocument.register_configuration_id == register_configuration_id
            )
        if parish_id is not None:
            query = query.where(RegisteredDocument.parish_id == parish_id)
        if year is not None:
            query = query.where(RegisteredDocument.year == year)
        if document_type:
            query = query.where(RegisteredDocument.document_type == document_type)
        if status:
            query = query.where(RegisteredDocument.status == status)
        if search:
            search_term = f"%{search}%"
            query = query.where(
                or_(
                    RegisteredDocument.subject.ilike(search_term),
                    RegisteredDocument.sender.ilike(search_term),
                    RegisteredDocument.recipient.ilike(search_term),
                )
            )
        return query

    async def list_documents(
        self,
        register_configuration_id: int | None = None,
        parish_id: int | None = None,
        year: int | None = None,
        document_type: str | None = None,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RegisteredDocument], int]:
        """List documents, newest registration first."""
        query = self._filtered_query(
            register_configuration_id, parish_id, year, document_type, status, search
        )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        query = (
            query.order_by(
                RegisteredDocument.year.desc(),
                RegisteredDocument.document_number.desc(),
                RegisteredDocument.id.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def list_for_export(self, **filters) -> list[RegisteredDocument]:
        """All documents matching the filters, in register order."""
        query = self._filtered_query(**filters).order_by(
            RegisteredDocument.register_configuration_id,
            RegisteredDocument.year,
            RegisteredDocument.document_number,
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def register_document(
        self,
        data: RegisteredDocumentCreate,
        created_by_id: int,
        parish_scope: int | None = None,
        registration_date: date | None = None,
    ) -> RegisteredDocument:
        """
        Register a document under the next number of its register.

        registration_date defaults to today; its year selects the numbering
        scope of registers that reset annually.

        Each attempt allocates a number and inserts the document inside one
        savepoint. A number collision rolls the savepoint back (nothing of
        that attempt persists) and the attempt is retried with backoff.

        Raises:
            NotFoundError: If the register configuration does not exist
            ConflictError: If no attempt succeeded within the retry budget
        """
        if data.idempotency_key:
            existing = await self.get_by_idempotency_key(data.idempotency_key)
            if existing is not None:
                _check_parish_scope(existing.parish_id, parish_scope)
                return existing

        config = await numbering.get_register_configuration(
            self.session, data.register_configuration_id
        )
        _check_parish_scope(config.parish_id, parish_scope)

        registration_date = registration_date or date.today()
        year = registration_date.year
        max_attempts = settings.register_number_max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                async with self.session.begin_nested():
                    allocated = await numbering.allocate_document_number(
                        self.session, config.id, year=year
                    )
                    document = RegisteredDocument(
                        register_configuration_id=config.id,
                        parish_id=config.parish_id,
                        document_number=allocated.document_number,
                        year=allocated.year,
                        scope_year=allocated.scope_year,
                        document_type=data.document_type.value,
                        registration_date=registration_date,
                        subject=data.subject,
                        sender=data.sender,
                        recipient=data.recipient,
                        petitioner_client_id=data.petitioner_client_id,
                        description=data.description,
                        file_path=data.file_path,
                        status=data.status.value,
                        idempotency_key=data.idempotency_key,
                        created_by_id=created_by_id,
                        updated_by_id=created_by_id,
                    )
                    self.session.add(document)
                    await self.session.flush()
            except IntegrityError as exc:
                if _is_idempotency_collision(exc):
                    existing = await self.get_by_idempotency_key(data.idempotency_key)
                    if existing is not None:
                        return existing
                    raise
                if not _is_number_collision(exc):
                    raise
                logger.warning(
                    "Registration number collision in register %s (attempt %s/%s)",
                    config.id,
                    attempt,
                    max_attempts,
                )
                await numbering.resync_counter(
                    self.session, config.id, config.scope_year_for(year)
                )
                if attempt < max_attempts:
                    await asyncio.sleep(backoff_delay(attempt))
                continue

            await create_audit_log(
                session=self.session,
                action=AuditAction.REGISTER_DOCUMENT,
                entity_type="RegisteredDocument",
                entity_id=document.id,
                user_id=created_by_id,
                entity_identifier=document.registration_number,
                new_values={
                    "register_configuration_id": document.register_configuration_id,
                    "document_number": document.document_number,
                    "year": document.year,
                    "document_type": document.document_type,
                    "subject": document.subject,
                },
            )
            await self.session.refresh(document)
            return document

        logger.error(
            "Gave up allocating a registration number in register %s after %s attempts",
            config.id,
            max_attempts,
        )
        raise ConflictError(
            "Could not allocate a registration number due to concurrent registrations, "
            "please resubmit",
            details={"register_configuration_id": config.id},
        )

    async def update_document(
        self,
        document_id: int,
        data: RegisteredDocumentUpdate,
        updated_by_id: int,
        parish_scope: int | None = None,
    ) -> RegisteredDocument:
        document = await self.get_by_id(document_id, parish_scope)
        if document.is_closed:
            raise InvalidStateError("document", document.status, "edit")

        changes = data.model_dump(exclude_unset=True)
        for enum_field in ("document_type", "status"):
            if changes.get(enum_field) is not None:
                changes[enum_field] = changes[enum_field].value

        old_values = {field: getattr(document, field) for field in changes}
        for field, value in changes.items():
            setattr(document, field, value)
        document.updated_by_id = updated_by_id
        await self.session.flush()

        if changes:
            await create_audit_log(
                session=self.session,
                action=AuditAction.UPDATE,
                entity_type="RegisteredDocument",
                entity_id=document.id,
                user_id=updated_by_id,
                entity_identifier=document.registration_number,
                old_values=old_values,
                new_values=changes,
            )
        await self.session.refresh(document)
        return document

    async def resolve_document(
        self,
        document_id: int,
        resolution_status: ResolutionStatus,
        resolution: str | None,
        resolved_by_id: int,
        can_resolve_any: bool,
        parish_scope: int | None = None,
    ) -> RegisteredDocument:
        """
        Close a document with an approval or rejection.

        Allowed for the creator, for users the document is pending with, and
        for holders of resolve_any.
        """
        document = await self.get_by_id(document_id, parish_scope)
        if (
            not can_resolve_any
            and document.created_by_id != resolved_by_id
            and not await self._has_pending_step(document.id, resolved_by_id)
        ):
            raise AuthorizationError("Insufficient permissions to resolve this document")
        if document.is_closed:
            raise InvalidStateError("document", document.status, "resolve")

        old_status = document.status
        document.status = DocumentStatus.RESOLVED.value
        document.resolution_status = resolution_status.value
        document.resolution = resolution
        document.resolved_at = datetime.now(timezone.utc)
        document.resolved_by_id = resolved_by_id
        document.updated_by_id = resolved_by_id
        await self.session.flush()

        await create_audit_log(
            session=self.session,
            action=AuditAction.RESOLVE_DOCUMENT,
            entity_type="RegisteredDocument",
            entity_id=document.id,
            user_id=resolved_by_id,
            entity_identifier=document.registration_number,
            old_values={"status": old_status},
            new_values={
                "status": document.status,
                "resolution_status": document.resolution_status,
            },
            comment=resolution,
        )
        await self.session.refresh(document)
        return document

    async def cancel_document(
        self,
        document_id: int,
        cancelled_by_id: int,
        reason: str | None = None,
        parish_scope: int | None = None,
    ) -> RegisteredDocument:
        """Cancel a document. Its number stays taken."""
        document = await self.get_by_id(document_id, parish_scope)
        if document.status == DocumentStatus.CANCELLED.value:
            raise InvalidStateError("document", document.status, "cancel")

        old_status = document.status
        document.status = DocumentStatus.CANCELLED.value
        document.updated_by_id = cancelled_by_id
        await self.session.flush()

        await create_audit_log(
            session=self.session,
            action=AuditAction.CANCEL,
            entity_type="RegisteredDocument",
            entity_id=document.id,
            user_id=cancelled_by_id,
            entity_identifier=document.registration_number,
            old_values={"status": old_status},
            new_values={"status": document.status},
            comment=reason,
        )
        await self.session.refresh(document)
        return document

    async def _has_pending_step(self, document_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            select(WorkflowStep.id)
            .where(
                WorkflowStep.document_id == document_id,
                WorkflowStep.to_user_id == user_id,
                WorkflowStep.step_status == StepStatus.PENDING.value,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def route_document(
        self,
        document_id: int,
        data: WorkflowRoute,
        from_user_id: int,
        parish_scope: int | None = None,
    ) -> WorkflowStep:
        """
        Hand a document over to another user.

        Routing onward from a received step completes that step. A draft
        document becomes distributed.

        Raises:
            NotFoundError: If the document does not exist
            InvalidStateError: If the document is resolved or cancelled
            ValidationError: If the recipient or the parent step is not valid
        """
        document = await self.get_by_id(document_id, parish_scope)
        if document.is_closed:
            raise InvalidStateError("document", document.status, "route")

        recipient = await AuthService(self.session).get_user_by_id(data.to_user_id)
        if recipient is None or not recipient.is_active:
            raise ValidationError("Recipient not found", field="to_user_id")
        if (
            document.parish_id is not None
            and recipient.parish_id is not None
            and recipient.parish_id != document.parish_id
        ):
            raise ValidationError("Recipient belongs to another parish", field="to_user_id")

        parent: WorkflowStep | None = None
        if data.parent_step_id is not None:
            result = await self.session.execute(
                select(WorkflowStep).where(
                    WorkflowStep.id == data.parent_step_id,
                    WorkflowStep.document_id == document.id,
                )
            )
            parent = result.scalar_one_or_none()
            if parent is None:
                raise ValidationError("Parent step not found", field="parent_step_id")

        step = WorkflowStep(
            document_id=document.id,
            parent_step_id=parent.id if parent else None,
            from_user_id=from_user_id,
            to_user_id=recipient.id,
            action=data.action.value,
            step_status=StepStatus.PENDING.value,
            notes=data.notes,
        )
        self.session.add(step)

        if parent is not None and parent.step_status == StepStatus.PENDING.value:
            parent.step_status = StepStatus.COMPLETED.value
            parent.completed_at = datetime.now(timezone.utc)

        old_status = document.status
        if document.status == DocumentStatus.DRAFT.value:
            document.status = DocumentStatus.DISTRIBUTED.value
        document.updated_by_id = from_user_id
        await self.session.flush()

        await create_audit_log(
            session=self.session,
            action=AuditAction.ROUTE_DOCUMENT,
            entity_type="RegisteredDocument",
            entity_id=document.id,
            user_id=from_user_id,
            entity_identifier=document.registration_number,
            old_values={"status": old_status},
            new_values={
                "status": document.status,
                "workflow_step_id": step.id,
                "to_user_id": step.to_user_id,
                "action": step.action,
            },
            comment=data.notes,
        )
        await self.session.refresh(step)
        return step

    async def get_workflow_tree(
        self, document_id: int, parish_scope: int | None = None
    ) -> tuple[list[WorkflowStep], list[WorkflowStepNode]]:
        """Workflow steps of a document, flat and as a tree of hand-overs."""
        document = await self.get_by_id(document_id, parish_scope)
        result = await self.session.execute(
            select(WorkflowStep)
            .where(WorkflowStep.document_id == document.id)
            .order_by(WorkflowStep.created_at, WorkflowStep.id)
        )
        steps = list(result.scalars().all())

        nodes = {step.id: WorkflowStepNode.model_validate(step) for step in steps}
        roots: list[WorkflowStepNode] = []
        for step in steps:
            node = nodes[step.id]
            parent = nodes.get(step.parent_step_id) if step.parent_step_id else None
            if parent is not None:
                parent.children.append(node)
            else:
                roots.append(node)
        return steps, roots
