"""
Pydantic schemas for the calls API.

JSON uses camelCase (``machineId``, ``remainingTime``) to match the UI.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from machinealert.calls.models import CallStatus, CallType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CallCreateRequest(CamelModel):
    """Schema for raising a call against a machine."""

    # Optional here so a missing machine surfaces as INVALID_INPUT (400).
    machine_id: UUID | None = Field(default=None, description="Machine the call is raised against")
    duration: int | None = Field(
        default=None,
        description="Minutes; defaults to the machine's configured duration",
    )
    call_type: CallType | None = Field(default=None, description="normal or mole")


class MachineSummary(CamelModel):
    """Machine as shown next to a call."""

    id: UUID
    name: str = Field(..., description='"N/A" when the machine no longer exists')
    status: str | None = None
    factory_id: UUID | None = None
    factory_name: str | None = None
    category_id: UUID | None = None
    category_name: str | None = None


class CallResponse(CamelModel):
    """Call with its freshly computed remaining time."""

    id: UUID
    machines: list[MachineSummary]
    call_time: datetime
    call_date: date = Field(..., alias="date")
    duration: int
    call_type: CallType
    status: CallStatus = Field(..., description="Status after read-time expiry projection")
    stored_status: CallStatus = Field(..., description="Status as persisted")
    remaining_time: int = Field(..., ge=0, description="Seconds until the deadline")
    completion_time: datetime | None = None
    created_by_role: str


class PaginationMeta(CamelModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class CallListResponse(CamelModel):
    """Schema for paginated call list response."""

    calls: list[CallResponse]
    pagination: PaginationMeta


class SweepErrorItem(CamelModel):
    id: UUID
    error: str


class SweepResponse(CamelModel):
    """Result of a forced expiration sweep."""

    message: str
    updated_count: int
    errors: list[SweepErrorItem] | None = None


class MessageResponse(CamelModel):
    message: str
