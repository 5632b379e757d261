"""
SQLAlchemy models for machine calls.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from machinealert.shared.clock import utc_now
from machinealert.shared.database import Base


class CallStatus(str, Enum):
    """Call lifecycle state."""

    PENDIENTE = "Pendiente"
    REALIZADA = "Realizada"
    EXPIRADA = "Expirada"

    @property
    def is_terminal(self) -> bool:
        return self is not CallStatus.PENDIENTE


class CallType(str, Enum):
    """Call kind. Mole calls always run on the short fixed duration."""

    NORMAL = "normal"
    MOLE = "mole"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Call(Base):
    """A timed request from production to logistics."""

    __tablename__ = "calls"
    __table_args__ = (
        Index("ix_calls_status_call_time", "status", "call_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    call_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # Minutes.
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    call_type: Mapped[CallType] = mapped_column(
        SQLEnum(CallType, name="call_type", values_callable=_enum_values),
        nullable=False,
        default=CallType.NORMAL,
    )
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(CallStatus, name="call_status", values_callable=_enum_values),
        nullable=False,
        default=CallStatus.PENDIENTE,
    )
    completion_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_by_role: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    machine_links: Mapped[list["CallMachine"]] = relationship(
        back_populates="call",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def machine_ids(self) -> list[UUID]:
        return [link.machine_id for link in self.machine_links]

    def __repr__(self) -> str:
        return f"<Call(id={self.id}, status={self.status}, call_time={self.call_time})>"


class CallMachine(Base):
    """Link from a call to a machine it was raised against.

    ``machine_id`` carries no foreign key: machines may be deleted
    independently and the call still lists.
    """

    __tablename__ = "call_machines"

    call_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("calls.id", ondelete="CASCADE"),
        primary_key=True,
    )
    machine_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, index=True)

    call: Mapped["Call"] = relationship(back_populates="machine_links")
