from src.core.audit.models import AuditLog
from src.core.audit.service import AuditAction, create_audit_log, list_entity_audit_entries

__all__ = ["AuditLog", "AuditAction", "create_audit_log", "list_entity_audit_entries"]
