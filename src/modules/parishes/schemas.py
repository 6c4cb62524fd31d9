from datetime import datetime

from pydantic import Field, field_validator

from src.shared.schemas import BaseSchema


class ParishCreate(BaseSchema):
    """Schema for creating a parish."""

    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    address: str | None = None
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Code must not be blank")
        return v


class ParishUpdate(BaseSchema):
    """Schema for updating a parish."""

    name: str | None = Field(None, min_length=1, max_length=255)
    address: str | None = None
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    is_active: bool | None = None

    @field_validator("name", "is_active")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class ParishResponse(BaseSchema):
    id: int
    name: str
    code: str
    address: str | None
    email: str | None
    phone: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ParishBrief(BaseSchema):
    """Parish summary embedded in other responses."""

    id: int
    name: str
    code: str
