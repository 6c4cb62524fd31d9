from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CANCEL = "CANCEL"
    LOGIN = "LOGIN"

    # Registratura
    REGISTER_DOCUMENT = "REGISTER_DOCUMENT"
    RESOLVE_DOCUMENT = "RESOLVE_DOCUMENT"
    ROUTE_DOCUMENT = "ROUTE_DOCUMENT"


async def create_audit_log(
    session: AsyncSession,
    action: str | AuditAction,
    entity_type: str,
    entity_id: int,
    user_id: int | None = None,
    entity_identifier: str | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    comment: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        session: Database session
        action: Action performed (e.g., CREATE, UPDATE, CANCEL)
        entity_type: Type of entity (e.g., Parish, RegisterConfiguration)
        entity_id: ID of the entity
        user_id: ID of the user who performed the action
        entity_identifier: Human-readable identifier (e.g., registration number)
        old_values: State before change
        new_values: State after change
        comment: Additional comment
        ip_address: Client IP address
        user_agent: Client user agent

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=str(action),
        entity_type=entity_type,
        entity_id=entity_id,
        entity_identifier=entity_identifier,
        old_values=old_values,
        new_values=new_values,
        comment=comment,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    session.add(audit_log)
    await session.flush()

    return audit_log


async def list_entity_audit_entries(
    session: AsyncSession, entity_type: str, entity_id: int
) -> list[AuditLog]:
    """History of a single entity, oldest first."""
    stmt = (
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at, AuditLog.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
