from datetime import date, datetime
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BaseModel, BigIntPK
from src.modules.parishes.models import Parish

# Scope year used by registers that never reset their numbering
PERPETUAL_SCOPE_YEAR = 0


class DocumentType(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    INTERNAL = "internal"


class DocumentStatus(StrEnum):
    DRAFT = "draft"
    IN_WORK = "in_work"
    DISTRIBUTED = "distributed"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class ResolutionStatus(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


# Statuses a document may be moved to through a plain update
EDITABLE_STATUSES = (DocumentStatus.DRAFT, DocumentStatus.IN_WORK, DocumentStatus.DISTRIBUTED)
CLOSED_STATUSES = (DocumentStatus.RESOLVED, DocumentStatus.CANCELLED)


class RegisterConfiguration(BaseModel):
    """
    Numbering scope of a general register.

    With resets_annually each calendar year gets its own sequence starting at
    starting_number; otherwise one sequence runs forever.
    """

    __tablename__ = "register_configurations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parish_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("parishes.id"), nullable=True, index=True
    )
    resets_annually: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    starting_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    updated_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )

    parish: Mapped[Parish | None] = relationship("Parish", lazy="selectin")

    __table_args__ = (
        CheckConstraint("starting_number >= 1", name="starting_number_positive"),
    )

    def scope_year_for(self, year: int) -> int:
        """Year component of the numbering scope for a registration year."""
        return year if self.resets_annually else PERPETUAL_SCOPE_YEAR


class RegisterCounter(Base):
    """Last issued number per (register, scope year)."""

    __tablename__ = "register_counters"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    register_configuration_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("register_configurations.id", ondelete="CASCADE"), nullable=False
    )
    scope_year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "register_configuration_id", "scope_year", name="uq_register_counter_scope"
        ),
    )


class RegisteredDocument(BaseModel):
    """
    Document entered in the general register.

    document_number is unique within (register_configuration_id, scope_year)
    and never changes once assigned. Cancelled documents keep their number.
    """

    __tablename__ = "general_register"

    register_configuration_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("register_configurations.id"), nullable=False, index=True
    )
    parish_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("parishes.id"), nullable=True, index=True
    )

    document_number: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    scope_year: Mapped[int] = mapped_column(Integer, nullable=False)

    document_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    registration_date: Mapped[date] = mapped_column(Date, nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    sender: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient: Mapped[str | None] = mapped_column(String(255), nullable=True)
    petitioner_client_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DocumentStatus.DRAFT.value, index=True
    )
    resolution_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )

    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)

    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    updated_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )

    register_configuration: Mapped[RegisterConfiguration] = relationship(
        "RegisterConfiguration", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint(
            "register_configuration_id",
            "scope_year",
            "document_number",
            name="uq_general_register_scope_number",
        ),
    )

    @property
    def registration_number(self) -> str:
        """Human-readable number, e.g. 17/2026."""
        return f"{self.document_number}/{self.year}"

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES


class WorkflowAction(StrEnum):
    SENT = "sent"
    FORWARDED = "forwarded"
    RETURNED = "returned"


class StepStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class WorkflowStep(BaseModel):
    """
    One hand-over of a registered document from a user to another.

    Steps form a tree: a step routed onward from a received step points to it
    through parent_step_id, and that parent step is then completed.
    """

    __tablename__ = "general_register_workflow"

    document_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("general_register.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_step_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("general_register_workflow.id"), nullable=True
    )
    from_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    to_user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    step_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StepStatus.PENDING.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
