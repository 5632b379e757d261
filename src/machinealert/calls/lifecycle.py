"""
Call lifecycle engine.

Owns the call state machine (Pendiente -> Realizada | Expirada), the
remaining-time formula and the batch expiration sweep. Terminal transitions
go through ``CallRepository.transition_if_pending`` so a completion racing a
sweep resolves in the store, not in process memory.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from machinealert.auth.rbac import Capability, creator_role_tag, require_capability
from machinealert.calls.models import Call, CallMachine, CallStatus, CallType
from machinealert.calls.repository import CallRepository
from machinealert.config import Settings, get_settings
from machinealert.machines.repository import MachineRepository
from machinealert.shared.clock import Clock, ensure_utc, utc_now
from machinealert.shared.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from machinealert.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


def remaining_seconds(call_time: datetime, duration_minutes: int, now: datetime) -> int:
    """Seconds left before a call's deadline, never negative.

    elapsed = floor((now - call_time) in whole seconds), remaining =
    max(0, duration * 60 - elapsed). A ``now`` before ``call_time`` counts
    as zero elapsed.
    """
    total_seconds = duration_minutes * 60
    delta = ensure_utc(now) - ensure_utc(call_time)
    elapsed_ms = (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000
    elapsed_seconds = max(0, elapsed_ms // 1000)
    return max(0, total_seconds - elapsed_seconds)


def project_status(stored_status: CallStatus, remaining: int) -> CallStatus:
    """Status shown to readers: an exhausted Pendiente call reads as Expirada."""
    if stored_status is CallStatus.PENDIENTE and remaining <= 0:
        return CallStatus.EXPIRADA
    return stored_status


def remaining_for(call: Call, now: datetime) -> int:
    """Remaining seconds for a stored call; terminal calls are frozen at zero."""
    if call.status.is_terminal:
        return 0
    return remaining_seconds(call.call_time, call.duration, now)


@dataclass(frozen=True)
class SweepError:
    call_id: UUID
    error: str


@dataclass
class SweepResult:
    """Outcome of one expiration sweep."""

    updated_count: int = 0
    errors: list[SweepError] = field(default_factory=list)
    expired_ids: list[UUID] = field(default_factory=list)


class CallLifecycleEngine:
    """Creates, completes, expires and deletes calls."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._clock = clock
        self._plant_tz = ZoneInfo(self._settings.plant_timezone)

    def resolve_duration(
        self,
        call_type: CallType,
        requested: int | None,
        machine_duration: int | None,
    ) -> int:
        """Pick a new call's duration: mole override, request, machine, default."""
        if call_type is CallType.MOLE:
            return self._settings.mole_call_duration_minutes
        if requested is not None:
            return requested
        if machine_duration:
            return machine_duration
        return self._settings.default_call_duration_minutes

    async def create_call(
        self,
        machine_id: UUID | None,
        roles: list[str],
        duration: int | None = None,
        call_type: CallType | str | None = None,
    ) -> Call:
        """Raise a new Pendiente call against a machine.

        Any authenticated caller may create calls; ``roles`` only picks the
        creator tag.

        Raises:
            InvalidInputError: Machine missing, or non-positive duration.
            NotFoundError: Machine does not exist.
        """
        if machine_id is None:
            raise InvalidInputError("Machine ID is required", details={"field": "machineId"})

        try:
            resolved_type = CallType(call_type) if call_type is not None else CallType.NORMAL
        except ValueError:
            raise InvalidInputError(
                f"Invalid call type: {call_type}",
                details={"field": "callType"},
            )

        if resolved_type is CallType.NORMAL and duration is not None and duration <= 0:
            raise InvalidInputError(
                "Duration must be a positive number of minutes",
                details={"field": "duration"},
            )

        async with self._session_factory() as session, session.begin():
            machine = await MachineRepository(session).get_by_id(machine_id)
            if machine is None:
                raise NotFoundError("Machine not found", details={"machine_id": str(machine_id)})

            now = self._clock()
            call = Call(
                id=uuid4(),
                call_time=now,
                call_date=ensure_utc(now).astimezone(self._plant_tz).date(),
                duration=self.resolve_duration(resolved_type, duration, machine.duration),
                call_type=resolved_type,
                status=CallStatus.PENDIENTE,
                completion_time=None,
                created_by_role=creator_role_tag(roles),
                machine_links=[CallMachine(machine_id=machine.id)],
            )
            await CallRepository(session).add(call)

        logger.info(
            "Call created",
            extra={
                "call_id": str(call.id),
                "machine_id": str(machine_id),
                "call_type": call.call_type.value,
                "duration": call.duration,
                "created_by_role": call.created_by_role,
            },
        )
        return call

    async def complete_call(self, call_id: UUID, roles: list[str]) -> Call:
        """Mark a Pendiente call as Realizada.

        Re-completing a terminal call is an error, not a no-op.

        Raises:
            ForbiddenError: Roles lack the completion capability.
            NotFoundError: Call does not exist.
            InvalidStateError: Call already left Pendiente.
        """
        require_capability(
            roles,
            Capability.COMPLETE_CALL,
            "Only LOGISTICA users can complete calls",
        )

        now = self._clock()
        async with self._session_factory() as session, session.begin():
            repo = CallRepository(session)
            transitioned = await repo.transition_if_pending(call_id, CallStatus.REALIZADA, now)
            call = await repo.get_by_id(call_id)
            if call is None:
                raise NotFoundError("Call not found", details={"call_id": str(call_id)})
            if not transitioned:
                raise InvalidStateError(
                    f"Call is already {call.status.value}",
                    details={"call_id": str(call_id), "status": call.status.value},
                )

        logger.info("Call completed", extra={"call_id": str(call_id)})
        return call

    async def delete_call(self, call_id: UUID, roles: list[str]) -> None:
        """Hard-delete a call.

        Raises:
            ForbiddenError: Roles lack the delete capability.
            NotFoundError: Call does not exist.
        """
        require_capability(roles, Capability.DELETE_CALL, "Only LOGISTICA users can delete calls")

        async with self._session_factory() as session, session.begin():
            repo = CallRepository(session)
            call = await repo.get_by_id(call_id)
            if call is None:
                raise NotFoundError("Call not found", details={"call_id": str(call_id)})
            await repo.delete(call)

        logger.info("Call deleted", extra={"call_id": str(call_id)})

    async def sweep_expired(self, now: datetime | None = None) -> SweepResult:
        """Persist Expirada for every Pendiente call whose time ran out.

        Each overdue call is expired in its own session, concurrently up to
        ``sweep_max_concurrency`` and bounded by ``sweep_call_timeout_seconds``.
        Per-call failures are collected in the result, never raised. A call
        that was completed in the meantime is skipped silently.

        Raises:
            StoreUnavailableError: The pending-call scan itself failed.
        """
        now = now or self._clock()

        async with self._session_factory() as session:
            pending = await CallRepository(session).list_pending()
            overdue = [
                call.id
                for call in pending
                if remaining_seconds(call.call_time, call.duration, now) == 0
            ]

        result = SweepResult()
        if not overdue:
            logger.debug("No overdue calls", extra={"pending": len(pending)})
            return result

        semaphore = asyncio.Semaphore(self._settings.sweep_max_concurrency)
        timeout = self._settings.sweep_call_timeout_seconds

        async def _process(call_id: UUID) -> bool | SweepError:
            async with semaphore:
                try:
                    return await asyncio.wait_for(self._expire_one(call_id, now), timeout=timeout)
                except asyncio.TimeoutError:
                    error = f"timed out after {timeout}s"
                except Exception as e:
                    error = str(e) or e.__class__.__name__
            logger.warning(
                "Failed to expire call",
                extra={"call_id": str(call_id), "error": error},
            )
            return SweepError(call_id=call_id, error=error)

        outcomes = await asyncio.gather(*(_process(call_id) for call_id in overdue))

        for call_id, outcome in zip(overdue, outcomes):
            if isinstance(outcome, SweepError):
                result.errors.append(outcome)
            elif outcome:
                result.updated_count += 1
                result.expired_ids.append(call_id)

        log_with_context(
            logger,
            logging.INFO,
            "Expiration sweep finished",
            pending=len(pending),
            overdue=len(overdue),
            expired=result.updated_count,
            failed=len(result.errors),
        )
        return result

    async def _expire_one(self, call_id: UUID, now: datetime) -> bool:
        async with self._session_factory() as session, session.begin():
            return await CallRepository(session).transition_if_pending(
                call_id,
                CallStatus.EXPIRADA,
                now,
            )
