"""
Machine lookups used by the call engine and the call query service.
"""

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from machinealert.machines.models import Factory, Machine
from machinealert.shared.database import store_errors


class MachineLookupProtocol(Protocol):
    """Read-only machine access."""

    async def get_by_id(self, machine_id: UUID) -> Machine | None:
        """Get a machine by ID."""
        ...

    async def get_many(self, machine_ids: Iterable[UUID]) -> dict[UUID, Machine]:
        """Get machines by ID, skipping the ones that no longer exist."""
        ...


class MachineRepository:
    """Repository for machine reads."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, machine_id: UUID) -> Machine | None:
        """Get a machine by ID.

        Args:
            machine_id: Machine UUID.

        Returns:
            Machine if found, None otherwise.
        """
        with store_errors("machine lookup"):
            return await self._session.get(Machine, machine_id)

    async def get_many(self, machine_ids: Iterable[UUID]) -> dict[UUID, Machine]:
        """Get machines with their factory and category loaded.

        Args:
            machine_ids: Machine UUIDs; duplicates are fine.

        Returns:
            Mapping of machine id to machine. Deleted machines are absent.
        """
        ids = set(machine_ids)
        if not ids:
            return {}

        stmt = (
            select(Machine)
            .where(Machine.id.in_(ids))
            .options(selectinload(Machine.factory).selectinload(Factory.category))
        )
        with store_errors("machine batch lookup"):
            result = await self._session.execute(stmt)
        return {machine.id: machine for machine in result.scalars().all()}
