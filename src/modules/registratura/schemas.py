from datetime import date, datetime

from pydantic import Field, field_validator

from src.modules.parishes.schemas import ParishBrief
from src.modules.registratura.models import (
    EDITABLE_STATUSES,
    DocumentStatus,
    DocumentType,
    ResolutionStatus,
    WorkflowAction,
)
from src.shared.schemas import BaseSchema


# --- Register Configuration Schemas ---

class RegisterConfigurationCreate(BaseSchema):
    """Schema for creating a register configuration."""

    name: str = Field(..., min_length=1, max_length=255)
    parish_id: int | None = None
    resets_annually: bool = True
    starting_number: int = Field(1, ge=1)
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class RegisterConfigurationUpdate(BaseSchema):
    """
    Schema for updating a register configuration.

    parish_id, resets_annually and starting_number can only change while the
    register has no documents.
    """

    name: str | None = Field(None, min_length=1, max_length=255)
    parish_id: int | None = None
    resets_annually: bool | None = None
    starting_number: int | None = Field(None, ge=1)
    notes: str | None = None

    @field_validator("name", "resets_annually", "starting_number")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class RegisterConfigurationResponse(BaseSchema):
    id: int
    name: str
    parish_id: int | None
    parish: ParishBrief | None = None
    resets_annually: bool
    starting_number: int
    notes: str | None
    created_by_id: int
    updated_by_id: int | None
    created_at: datetime
    updated_at: datetime


class BulkRegisterCreateResponse(BaseSchema):
    """Result of creating default registers for parishes."""

    created: int
    skipped: int
    register_configurations: list[RegisterConfigurationResponse]


class NextNumberResponse(BaseSchema):
    """Preview of the next registration number (not reserved)."""

    register_configuration_id: int
    document_number: int
    year: int


# --- General Register Schemas ---

class RegisteredDocumentCreate(BaseSchema):
    """Schema for registering a new document. Number and date are assigned by the server."""

    register_configuration_id: int
    document_type: DocumentType
    subject: str = Field(..., min_length=1, max_length=500)
    sender: str | None = Field(None, max_length=255)
    recipient: str | None = Field(None, max_length=255)
    petitioner_client_id: int | None = None
    description: str | None = None
    file_path: str | None = Field(None, max_length=500)
    status: DocumentStatus = DocumentStatus.DRAFT
    # Resubmitting with the same key returns the already registered document
    idempotency_key: str | None = Field(None, min_length=1, max_length=100)

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Subject is required")
        return v

    @field_validator("status")
    @classmethod
    def validate_initial_status(cls, v: DocumentStatus) -> DocumentStatus:
        if v not in EDITABLE_STATUSES:
            raise ValueError("New documents cannot be resolved or cancelled")
        return v


class RegisteredDocumentUpdate(BaseSchema):
    """Editable fields of a registered document. The number never changes."""

    document_type: DocumentType | None = None
    subject: str | None = Field(None, min_length=1, max_length=500)
    sender: str | None = Field(None, max_length=255)
    recipient: str | None = Field(None, max_length=255)
    petitioner_client_id: int | None = None
    description: str | None = None
    file_path: str | None = Field(None, max_length=500)
    status: DocumentStatus | None = None

    @field_validator("document_type")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, v: str | None) -> str:
        v = v.strip() if v is not None else ""
        if not v:
            raise ValueError("Subject is required")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: DocumentStatus | None) -> DocumentStatus:
        if v not in EDITABLE_STATUSES:
            raise ValueError("Use the resolve or cancel actions to close a document")
        return v


class DocumentResolve(BaseSchema):
    resolution_status: ResolutionStatus
    resolution: str | None = None


class DocumentCancel(BaseSchema):
    reason: str | None = None


class RegisteredDocumentResponse(BaseSchema):
    id: int
    register_configuration_id: int
    parish_id: int | None
    document_number: int
    year: int
    registration_number: str
    document_type: str
    registration_date: date
    subject: str
    sender: str | None
    recipient: str | None
    petitioner_client_id: int | None
    description: str | None
    file_path: str | None
    status: str
    resolution_status: str | None
    resolution: str | None
    resolved_at: datetime | None
    resolved_by_id: int | None
    idempotency_key: str | None
    created_by_id: int
    updated_by_id: int | None
    created_at: datetime
    updated_at: datetime


class DocumentHistoryEntry(BaseSchema):
    id: int
    action: str
    user_id: int | None
    old_values: dict | None
    new_values: dict | None
    comment: str | None
    created_at: datetime


# --- Workflow Schemas ---

class WorkflowRoute(BaseSchema):
    """Hand a document over to another user."""

    to_user_id: int
    action: WorkflowAction
    # Step the document is routed onward from (None for a first hand-over)
    parent_step_id: int | None = None
    notes: str | None = None


class WorkflowStepResponse(BaseSchema):
    id: int
    document_id: int
    parent_step_id: int | None
    from_user_id: int
    to_user_id: int
    action: str
    step_status: str
    notes: str | None
    completed_at: datetime | None
    created_at: datetime


class WorkflowStepNode(WorkflowStepResponse):
    children: list["WorkflowStepNode"] = Field(default_factory=list)


WorkflowStepNode.model_rebuild()


class WorkflowTreeResponse(BaseSchema):
    steps: list[WorkflowStepResponse]
    tree: list[WorkflowStepNode]
