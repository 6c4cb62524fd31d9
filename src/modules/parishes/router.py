from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import require_permission
from src.core.auth.models import User
from src.core.auth.permissions import Permission
from src.core.database import get_db
from src.modules.parishes.schemas import ParishCreate, ParishResponse, ParishUpdate
from src.modules.parishes.service import ParishService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/parishes", tags=["Parishes"])


@router.get("", response_model=ApiResponse[PaginatedResponse[ParishResponse]])
async def list_parishes(
    is_active: bool | None = Query(None),
    search: str | None = Query(None, description="Search by name or code"),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PARISHES_READ)),
):
    """List parishes."""
    service = ParishService(db)
    parishes, total = await service.list_parishes(
        is_active=is_active, search=search, page=page, limit=limit
    )
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[ParishResponse.model_validate(p) for p in parishes],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.post("", response_model=ApiResponse[ParishResponse], status_code=201)
async def create_parish(
    data: ParishCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PARISHES_WRITE)),
):
    service = ParishService(db)
    parish = await service.create_parish(data, created_by_id=current_user.id)
    return ApiResponse(data=ParishResponse.model_validate(parish), message="Parish created")


@router.get("/{parish_id}", response_model=ApiResponse[ParishResponse])
async def get_parish(
    parish_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PARISHES_READ)),
):
    service = ParishService(db)
    parish = await service.get_parish_or_404(parish_id)
    return ApiResponse(data=ParishResponse.model_validate(parish))


@router.put("/{parish_id}", response_model=ApiResponse[ParishResponse])
async def update_parish(
    parish_id: int,
    data: ParishUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.PARISHES_WRITE)),
):
    """Update parish details. Set is_active=false to deactivate."""
    service = ParishService(db)
    parish = await service.update_parish(parish_id, data, updated_by_id=current_user.id)
    return ApiResponse(data=ParishResponse.model_validate(parish), message="Parish updated")
