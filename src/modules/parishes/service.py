from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, create_audit_log
from src.core.exceptions import DuplicateError, NotFoundError
from src.modules.parishes.models import Parish
from src.modules.parishes.schemas import ParishCreate, ParishUpdate


class ParishService:
    """Service for parish management."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_parish_by_id(self, parish_id: int) -> Parish | None:
        result = await self.session.execute(select(Parish).where(Parish.id == parish_id))
        return result.scalar_one_or_none()

    async def get_parish_or_404(self, parish_id: int) -> Parish:
        parish = await self.get_parish_by_id(parish_id)
        if not parish:
            raise NotFoundError("Parish", parish_id)
        return parish

    async def list_parishes(
        self,
        is_active: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[Parish], int]:
        """List parishes with optional filters."""
        query = select(Parish).order_by(Parish.name)
        if is_active is not None:
            query = query.where(Parish.is_active == is_active)
        if search:
            search_term = f"%{search}%"
            query = query.where(or_(Parish.name.ilike(search_term), Parish.code.ilike(search_term)))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        query = query.offset((page - 1) * limit).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def create_parish(self, data: ParishCreate, created_by_id: int) -> Parish:
        existing = await self.session.execute(select(Parish).where(Parish.code == data.code))
        if existing.scalar_one_or_none():
            raise DuplicateError("Parish", "code", data.code)

        parish = Parish(
            name=data.name,
            code=data.code,
            address=data.address,
            email=data.email,
            phone=data.phone,
            is_active=True,
        )
        self.session.add(parish)
        await self.session.flush()

        await create_audit_log(
            session=self.session,
            action=AuditAction.CREATE,
            entity_type="Parish",
            entity_id=parish.id,
            user_id=created_by_id,
            entity_identifier=parish.code,
            new_values={"name": parish.name, "code": parish.code},
        )
        return parish

    async def update_parish(self, parish_id: int, data: ParishUpdate, updated_by_id: int) -> Parish:
        parish = await self.get_parish_or_404(parish_id)

        changes = data.model_dump(exclude_unset=True)
        old_values = {field: getattr(parish, field) for field in changes}
        for field, value in changes.items():
            setattr(parish, field, value)
        await self.session.flush()

        if changes:
            await create_audit_log(
                session=self.session,
                action=AuditAction.UPDATE,
                entity_type="Parish",
                entity_id=parish.id,
                user_id=updated_by_id,
                entity_identifier=parish.code,
                old_values=old_values,
                new_values=changes,
            )
        await self.session.refresh(parish)
        return parish
