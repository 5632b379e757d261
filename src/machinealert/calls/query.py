"""
Call query service: filtered, paginated, time-projected call views.

Listing never writes. A stored Pendiente call past its deadline is reported
as Expirada with zero remaining time; the expiration sweep is what persists
that state. Filtering runs on the stored status, so such a call still
matches ``status=Pendiente`` until the next sweep.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from machinealert.calls.lifecycle import project_status, remaining_for
from machinealert.calls.models import Call
from machinealert.calls.repository import CallFilters, CallRepository
from machinealert.calls.schemas import CallResponse, MachineSummary
from machinealert.config import Settings, get_settings
from machinealert.machines.models import Machine
from machinealert.machines.repository import MachineRepository
from machinealert.shared.clock import Clock, ensure_utc, utc_now
from machinealert.shared.exceptions import InvalidInputError, NotFoundError
from machinealert.shared.logging import get_logger
from machinealert.shared.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

MISSING_MACHINE_NAME = "N/A"


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    page_size: int = 10


@dataclass(frozen=True)
class CallPage:
    """One page of projected calls."""

    items: list[CallResponse]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def summarize_machine(machine_id: UUID, machine: Machine | None) -> MachineSummary:
    if machine is None:
        return MachineSummary(id=machine_id, name=MISSING_MACHINE_NAME)
    factory = machine.factory
    category = factory.category if factory is not None else None
    return MachineSummary(
        id=machine.id,
        name=machine.name,
        status=machine.status.value,
        factory_id=factory.id if factory is not None else None,
        factory_name=factory.name if factory is not None else None,
        category_id=category.id if category is not None else None,
        category_name=category.name if category is not None else None,
    )


def project_call(call: Call, machines: dict[UUID, Machine], now: datetime) -> CallResponse:
    """Build the read view of a stored call at ``now``."""
    remaining = remaining_for(call, now)
    return CallResponse(
        id=call.id,
        machines=[summarize_machine(mid, machines.get(mid)) for mid in call.machine_ids],
        call_time=ensure_utc(call.call_time),
        call_date=call.call_date,
        duration=call.duration,
        call_type=call.call_type,
        status=project_status(call.status, remaining),
        stored_status=call.status,
        remaining_time=remaining,
        completion_time=ensure_utc(call.completion_time) if call.completion_time else None,
        created_by_role=call.created_by_role,
    )


class CallQueryService:
    """Read side of the call engine."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._clock = clock
        self._retry_policy = RetryPolicy(
            max_attempts=self._settings.read_retry_attempts,
            base_delay_seconds=self._settings.read_retry_base_delay_seconds,
        )

    def _validate_page(self, pagination: PageRequest) -> None:
        if pagination.page < 1:
            raise InvalidInputError("page must be >= 1", details={"field": "page"})
        if not 1 <= pagination.page_size <= self._settings.max_page_size:
            raise InvalidInputError(
                f"limit must be between 1 and {self._settings.max_page_size}",
                details={"field": "limit"},
            )

    async def _project(
        self,
        session: AsyncSession,
        calls: Sequence[Call],
    ) -> list[CallResponse]:
        machine_ids = [mid for call in calls for mid in call.machine_ids]
        machines = await MachineRepository(session).get_many(machine_ids)
        now = self._clock()
        return [project_call(call, machines, now) for call in calls]

    async def list_calls(
        self,
        filters: CallFilters | None = None,
        pagination: PageRequest | None = None,
    ) -> CallPage:
        """List calls newest first with remaining time attached.

        Raises:
            InvalidInputError: Page or page size out of range.
            StoreUnavailableError: The store stayed unavailable through all retries.
        """
        filters = filters or CallFilters()
        pagination = pagination or PageRequest(page_size=self._settings.default_page_size)
        self._validate_page(pagination)

        async def _read() -> CallPage:
            async with self._session_factory() as session:
                calls, total = await CallRepository(session).list_page(
                    filters,
                    page=pagination.page,
                    page_size=pagination.page_size,
                )
                items = await self._project(session, calls)
            return CallPage(
                items=items,
                page=pagination.page,
                page_size=pagination.page_size,
                total=total,
            )

        page = await retry_async(_read, self._retry_policy, operation_name="list calls")
        logger.debug(
            "Calls listed",
            extra={"page": page.page, "returned": len(page.items), "total": page.total},
        )
        return page

    async def list_all(self, filters: CallFilters | None = None) -> list[CallResponse]:
        """Every call matching ``filters``, projected, newest first."""
        filters = filters or CallFilters()

        async def _read() -> list[CallResponse]:
            async with self._session_factory() as session:
                calls = await CallRepository(session).list_all(filters)
                return await self._project(session, calls)

        return await retry_async(_read, self._retry_policy, operation_name="list all calls")

    async def get_call(self, call_id: UUID) -> CallResponse:
        """Projected view of one call.

        Raises:
            NotFoundError: Call does not exist.
        """

        async def _read() -> CallResponse | None:
            async with self._session_factory() as session:
                call = await CallRepository(session).get_by_id(call_id)
                if call is None:
                    return None
                return (await self._project(session, [call]))[0]

        view = await retry_async(_read, self._retry_policy, operation_name="get call")
        if view is None:
            raise NotFoundError("Call not found", details={"call_id": str(call_id)})
        return view

    async def present(self, call: Call) -> CallResponse:
        """Projected view of a call the engine just returned."""

        async def _read() -> CallResponse:
            async with self._session_factory() as session:
                machines = await MachineRepository(session).get_many(call.machine_ids)
            return project_call(call, machines, self._clock())

        return await retry_async(_read, self._retry_policy, operation_name="present call")
