from src.modules.registratura.models import (
    DocumentStatus,
    DocumentType,
    RegisterConfiguration,
    RegisterCounter,
    RegisteredDocument,
    ResolutionStatus,
    WorkflowAction,
    WorkflowStep,
)
from src.modules.registratura.numbering import (
    AllocatedNumber,
    allocate_document_number,
    peek_next_document_number,
)
from src.modules.registratura.service import GeneralRegisterService, RegisterConfigurationService

__all__ = [
    "DocumentStatus",
    "DocumentType",
    "RegisterConfiguration",
    "RegisterCounter",
    "RegisteredDocument",
    "ResolutionStatus",
    "WorkflowAction",
    "WorkflowStep",
    "AllocatedNumber",
    "allocate_document_number",
    "peek_next_document_number",
    "GeneralRegisterService",
    "RegisterConfigurationService",
]
