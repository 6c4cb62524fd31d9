from datetime import datetime
from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class UserRole(StrEnum):
    """User roles in the system."""

    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    SECRETARY = "Secretary"
    USER = "User"


class User(BaseModel):
    """
    Staff member with (optional) system access.

    A user may be bound to a parish; parish-bound users only see registers
    of their own parish unless they are admins.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    parish_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("parishes.id"), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def can_login(self) -> bool:
        """Check if user can login (has password set)."""
        return self.password_hash is not None

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value)
