from datetime import date

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import list_entity_audit_entries
from src.core.auth.dependencies import require_permission
from src.core.auth.models import User
from src.core.auth.permissions import Permission, role_has_permission
from src.core.database import get_db
from src.modules.registratura.excel_export import export_general_register
from src.modules.registratura.models import DocumentStatus, DocumentType
from src.modules.registratura.numbering import peek_next_document_number
from src.modules.registratura.schemas import (
    BulkRegisterCreateResponse,
    DocumentCancel,
    DocumentHistoryEntry,
    DocumentResolve,
    NextNumberResponse,
    RegisterConfigurationCreate,
    RegisterConfigurationResponse,
    RegisterConfigurationUpdate,
    RegisteredDocumentCreate,
    RegisteredDocumentResponse,
    RegisteredDocumentUpdate,
    WorkflowRoute,
    WorkflowStepResponse,
    WorkflowTreeResponse,
)
from src.modules.registratura.service import GeneralRegisterService, RegisterConfigurationService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/registratura", tags=["Registratura"])


def _parish_scope(user: User) -> int | None:
    """Parish a non-admin user is confined to (None = all parishes)."""
    if user.is_admin:
        return None
    return user.parish_id


# --- Register Configuration Endpoints ---

@router.get(
    "/register-configurations",
    response_model=ApiResponse[list[RegisterConfigurationResponse]],
)
async def list_register_configurations(
    parish_id: int | None = Query(None, description="Filter by parish"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_READ)),
):
    """List register configurations."""
    scope = _parish_scope(current_user)
    if scope is not None:
        parish_id = scope
    service = RegisterConfigurationService(db)
    configs = await service.list_configurations(parish_id=parish_id)
    return ApiResponse(
        data=[RegisterConfigurationResponse.model_validate(c) for c in configs],
        message="Register configurations retrieved",
    )


@router.post(
    "/register-configurations",
    response_model=ApiResponse[RegisterConfigurationResponse],
    status_code=201,
)
async def create_register_configuration(
    data: RegisterConfigurationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_WRITE)),
):
    service = RegisterConfigurationService(db)
    config = await service.create_configuration(data, created_by_id=current_user.id)
    return ApiResponse(
        data=RegisterConfigurationResponse.model_validate(config),
        message="Register configuration created",
    )


@router.post(
    "/register-configurations/for-parishes",
    response_model=ApiResponse[BulkRegisterCreateResponse],
    status_code=201,
)
async def create_registers_for_parishes(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_WRITE)),
):
    """Create a default register for every active parish that has none yet."""
    service = RegisterConfigurationService(db)
    created, skipped = await service.create_for_parishes(created_by_id=current_user.id)
    return ApiResponse(
        data=BulkRegisterCreateResponse(
            created=len(created),
            skipped=skipped,
            register_configurations=[
                RegisterConfigurationResponse.model_validate(c) for c in created
            ],
        ),
        message=f"Created {len(created)} register(s)",
    )


@router.get(
    "/register-configurations/{config_id}",
    response_model=ApiResponse[RegisterConfigurationResponse],
)
async def get_register_configuration(
    config_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_READ)),
):
    service = RegisterConfigurationService(db)
    config = await service.get_by_id(config_id, parish_scope=_parish_scope(current_user))
    return ApiResponse(data=RegisterConfigurationResponse.model_validate(config))


@router.get(
    "/register-configurations/{config_id}/next-number",
    response_model=ApiResponse[NextNumberResponse],
)
async def get_next_number(
    config_id: int,
    year: int | None = Query(None, description="Registration year (default: current year)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_READ)),
):
    """
    Preview the number the next registered document would receive.

    Nothing is reserved: a concurrent registration may take this number first.
    """
    service = RegisterConfigurationService(db)
    await service.get_by_id(config_id, parish_scope=_parish_scope(current_user))
    allocated = await peek_next_document_number(db, config_id, year=year)
    return ApiResponse(
        data=NextNumberResponse(
            register_configuration_id=config_id,
            document_number=allocated.document_number,
            year=allocated.year,
        ),
    )


@router.put(
    "/register-configurations/{config_id}",
    response_model=ApiResponse[RegisterConfigurationResponse],
)
async def update_register_configuration(
    config_id: int,
    data: RegisterConfigurationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_WRITE)),
):
    service = RegisterConfigurationService(db)
    config = await service.update_configuration(config_id, data, updated_by_id=current_user.id)
    return ApiResponse(
        data=RegisterConfigurationResponse.model_validate(config),
        message="Register configuration updated",
    )


@router.delete(
    "/register-configurations/{config_id}",
    response_model=ApiResponse[None],
)
async def delete_register_configuration(
    config_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REGISTER_CONFIGURATIONS_DELETE)),
):
    """Delete a register configuration that has no documents."""
    service = RegisterConfigurationService(db)
    await service.delete_configuration(config_id, deleted_by_id=current_user.id)
    return ApiResponse(data=None, message="Register configuration deleted successfully")


# --- General Register Endpoints ---

@router.get(
    "/general-register",
    response_model=ApiResponse[PaginatedResponse[RegisteredDocumentResponse]],
)
async def list_documents(
    register_configuration_id: int | None = Query(None),
    year: int | None = Query(None),
    document_type: DocumentType | None = Query(None),
    status: DocumentStatus | None = Query(None),
    search: str | None = Query(None, description="Search subject, sender, recipient"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_READ)),
):
    """List registered documents, newest number first."""
    service = GeneralRegisterService(db)
    documents, total = await service.list_documents(
        register_configuration_id=register_configuration_id,
        parish_id=_parish_scope(current_user),
        year=year,
        document_type=document_type.value if document_type else None,
        status=status.value if status else None,
        search=search,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[RegisteredDocumentResponse.model_validate(d) for d in documents],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.post(
    "/general-register",
    response_model=ApiResponse[RegisteredDocumentResponse],
    status_code=201,
)
async def register_document(
    data: RegisteredDocumentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_CREATE)),
):
    """
    Register a new document.

    The registration number and date are assigned by the server. Returns 409
    when the number could not be allocated due to contention; resubmitting
    with the same idempotency_key never registers the document twice.
    """
    service = GeneralRegisterService(db)
    document = await service.register_document(
        data,
        created_by_id=current_user.id,
        parish_scope=_parish_scope(current_user),
    )
    return ApiResponse(
        data=RegisteredDocumentResponse.model_validate(document),
        message=f"Document registered with number {document.registration_number}",
    )


@router.get("/general-register/export")
async def export_documents(
    register_configuration_id: int | None = Query(None),
    year: int | None = Query(None),
    document_type: DocumentType | None = Query(None),
    status: DocumentStatus | None = Query(None),
    search: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_EXPORT)),
):
    """Export matching documents as an Excel file."""
    service = GeneralRegisterService(db)
    documents = await service.list_for_export(
        register_configuration_id=register_configuration_id,
        parish_id=_parish_scope(current_user),
        year=year,
        document_type=document_type.value if document_type else None,
        status=status.value if status else None,
        search=search,
    )
    title = f"Registrul general {year}" if year else None
    content = export_general_register(documents, title=title)
    filename = f"registrul-general-{year or date.today().isoformat()}.xlsx"
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/general-register/{document_id}",
    response_model=ApiResponse[RegisteredDocumentResponse],
)
async def get_document(
    document_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_READ)),
):
    service = GeneralRegisterService(db)
    document = await service.get_by_id(document_id, parish_scope=_parish_scope(current_user))
    return ApiResponse(data=RegisteredDocumentResponse.model_validate(document))


@router.get(
    "/general-register/{document_id}/history",
    response_model=ApiResponse[list[DocumentHistoryEntry]],
)
async def get_document_history(
    document_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_READ)),
):
    """Audit trail of a registered document."""
    service = GeneralRegisterService(db)
    document = await service.get_by_id(document_id, parish_scope=_parish_scope(current_user))
    entries = await list_entity_audit_entries(db, "RegisteredDocument", document.id)
    return ApiResponse(data=[DocumentHistoryEntry.model_validate(e) for e in entries])


@router.put(
    "/general-register/{document_id}",
    response_model=ApiResponse[RegisteredDocumentResponse],
)
async def update_document(
    document_id: int,
    data: RegisteredDocumentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_UPDATE)),
):
    """Update document details. Number, year and registration date cannot change."""
    service = GeneralRegisterService(db)
    document = await service.update_document(
        document_id,
        data,
        updated_by_id=current_user.id,
        parish_scope=_parish_scope(current_user),
    )
    return ApiResponse(
        data=RegisteredDocumentResponse.model_validate(document),
        message="Document updated",
    )


@router.post(
    "/general-register/{document_id}/resolve",
    response_model=ApiResponse[RegisteredDocumentResponse],
)
async def resolve_document(
    document_id: int,
    data: DocumentResolve,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_READ)),
):
    """
    Resolve a document with approval or rejection.

    Allowed for the document's creator and for holders of general_register.resolve_any.
    """
    service = GeneralRegisterService(db)
    document = await service.resolve_document(
        document_id,
        resolution_status=data.resolution_status,
        resolution=data.resolution,
        resolved_by_id=current_user.id,
        can_resolve_any=role_has_permission(
            current_user.role, Permission.GENERAL_REGISTER_RESOLVE_ANY
        ),
        parish_scope=_parish_scope(current_user),
    )
    return ApiResponse(
        data=RegisteredDocumentResponse.model_validate(document),
        message="Document resolved",
    )


@router.post(
    "/general-register/{document_id}/cancel",
    response_model=ApiResponse[RegisteredDocumentResponse],
)
async def cancel_document(
    document_id: int,
    data: DocumentCancel,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_UPDATE)),
):
    """Cancel a document. Its registration number is not reused."""
    service = GeneralRegisterService(db)
    document = await service.cancel_document(
        document_id,
        cancelled_by_id=current_user.id,
        reason=data.reason,
        parish_scope=_parish_scope(current_user),
    )
    return ApiResponse(
        data=RegisteredDocumentResponse.model_validate(document),
        message="Document cancelled",
    )


@router.get(
    "/general-register/{document_id}/workflow",
    response_model=ApiResponse[WorkflowTreeResponse],
)
async def get_document_workflow(
    document_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_READ)),
):
    """Routing history of a document, flat and as a tree."""
    service = GeneralRegisterService(db)
    steps, tree = await service.get_workflow_tree(
        document_id, parish_scope=_parish_scope(current_user)
    )
    return ApiResponse(
        data=WorkflowTreeResponse(
            steps=[WorkflowStepResponse.model_validate(s) for s in steps],
            tree=tree,
        ),
    )


@router.post(
    "/general-register/{document_id}/workflow",
    response_model=ApiResponse[WorkflowStepResponse],
    status_code=201,
)
async def route_document(
    document_id: int,
    data: WorkflowRoute,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.GENERAL_REGISTER_UPDATE)),
):
    """Send, forward or return a document to another user."""
    service = GeneralRegisterService(db)
    step = await service.route_document(
        document_id,
        data,
        from_user_id=current_user.id,
        parish_scope=_parish_scope(current_user),
    )
    return ApiResponse(
        data=WorkflowStepResponse.model_validate(step),
        message="Document routed",
    )
