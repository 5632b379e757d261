"""
Repository for call database operations.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol, Sequence
from uuid import UUID

from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from machinealert.calls.models import Call, CallMachine, CallStatus
from machinealert.machines.models import Factory, Machine
from machinealert.shared.database import store_errors


@dataclass(frozen=True)
class CallFilters:
    """Optional, AND-combined list filters.

    ``status`` matches the stored status, before any read-time projection.
    """

    machine_id: UUID | None = None
    status: CallStatus | None = None
    call_date: date | None = None
    factory_id: UUID | None = None
    category_id: UUID | None = None


class CallRepositoryProtocol(Protocol):
    """Protocol for call repository operations."""

    async def add(self, call: Call) -> Call:
        """Persist a new call."""
        ...

    async def get_by_id(self, call_id: UUID) -> Call | None:
        """Get call by ID."""
        ...

    async def list_page(
        self,
        filters: CallFilters,
        page: int,
        page_size: int,
    ) -> tuple[Sequence[Call], int]:
        """Get filtered calls with pagination."""
        ...

    async def transition_if_pending(
        self,
        call_id: UUID,
        new_status: CallStatus,
        completion_time: datetime,
    ) -> bool:
        """Move a call out of Pendiente if it is still Pendiente."""
        ...


class CallRepository:
    """Repository for call database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def add(self, call: Call) -> Call:
        """Persist a new call.

        Args:
            call: Transient call with its machine links attached.

        Returns:
            The flushed call.
        """
        self._session.add(call)
        with store_errors("call insert"):
            await self._session.flush()
        return call

    async def get_by_id(self, call_id: UUID) -> Call | None:
        """Get a call by ID.

        Args:
            call_id: Call UUID.

        Returns:
            Call if found, None otherwise.
        """
        stmt = select(Call).where(Call.id == call_id).execution_options(populate_existing=True)
        with store_errors("call lookup"):
            result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    def _filtered(self, filters: CallFilters) -> Select[tuple[Call]]:
        stmt = select(Call)

        if filters.machine_id is not None:
            stmt = stmt.where(
                Call.id.in_(
                    select(CallMachine.call_id).where(CallMachine.machine_id == filters.machine_id)
                )
            )

        if filters.status is not None:
            stmt = stmt.where(Call.status == filters.status)

        if filters.call_date is not None:
            stmt = stmt.where(Call.call_date == filters.call_date)

        if filters.factory_id is not None or filters.category_id is not None:
            machine_match = (
                select(CallMachine.call_id)
                .join(Machine, Machine.id == CallMachine.machine_id)
                .join(Factory, Factory.id == Machine.factory_id)
            )
            if filters.factory_id is not None:
                machine_match = machine_match.where(Factory.id == filters.factory_id)
            if filters.category_id is not None:
                machine_match = machine_match.where(Factory.category_id == filters.category_id)
            stmt = stmt.where(Call.id.in_(machine_match))

        return stmt

    async def list_page(
        self,
        filters: CallFilters,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[Sequence[Call], int]:
        """Get filtered calls with pagination, newest first.

        Args:
            filters: List filters.
            page: Page number (1-indexed).
            page_size: Number of items per page.

        Returns:
            Tuple of (calls, total count across all pages).
        """
        base_query = self._filtered(filters)

        count_stmt = select(func.count()).select_from(base_query.subquery())
        offset = (page - 1) * page_size
        stmt = (
            base_query
            .order_by(Call.call_time.desc(), Call.id.desc())
            .offset(offset)
            .limit(page_size)
        )

        with store_errors("call listing"):
            total_result = await self._session.execute(count_stmt)
            total = total_result.scalar() or 0
            result = await self._session.execute(stmt)
        return result.scalars().all(), total

    async def list_all(self, filters: CallFilters) -> Sequence[Call]:
        """Get every call matching ``filters``, newest first."""
        stmt = self._filtered(filters).order_by(Call.call_time.desc(), Call.id.desc())
        with store_errors("call export"):
            result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_pending(self) -> Sequence[Call]:
        """Get every Pendiente call, oldest first (served by the status/call_time index)."""
        stmt = (
            select(Call)
            .where(Call.status == CallStatus.PENDIENTE)
            .order_by(Call.call_time.asc())
        )
        with store_errors("pending call scan"):
            result = await self._session.execute(stmt)
        return result.scalars().all()

    async def transition_if_pending(
        self,
        call_id: UUID,
        new_status: CallStatus,
        completion_time: datetime,
    ) -> bool:
        """Atomically move a call out of Pendiente.

        The UPDATE only matches while the stored status is still Pendiente,
        so of two racing transitions exactly one applies.

        Args:
            call_id: Call UUID.
            new_status: Terminal status to set.
            completion_time: Timestamp of the transition.

        Returns:
            True if this statement performed the transition.
        """
        stmt = (
            update(Call)
            .where(and_(Call.id == call_id, Call.status == CallStatus.PENDIENTE))
            .values(status=new_status, completion_time=completion_time)
            .returning(Call.id)
            .execution_options(synchronize_session=False)
        )
        with store_errors("call transition"):
            result = await self._session.execute(stmt)
            row = result.first()
        return row is not None

    async def delete(self, call: Call) -> None:
        """Hard-delete a call and its machine links."""
        with store_errors("call delete"):
            await self._session.delete(call)
            await self._session.flush()
