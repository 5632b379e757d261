"""
SQLAlchemy models for the plant hierarchy (category, factory, machine).

These tables are owned by the catalog service; this package only reads them.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from machinealert.shared.database import Base


class MachineStatus(str, Enum):
    """Operational status of a machine."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    factories: Mapped[list["Factory"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name={self.name})>"


class Factory(Base):
    __tablename__ = "factories"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    category: Mapped["Category | None"] = relationship(back_populates="factories")
    machines: Mapped[list["Machine"]] = relationship(back_populates="factory")

    def __repr__(self) -> str:
        return f"<Factory(id={self.id}, name={self.name})>"


class Machine(Base):
    """Machine a call can be raised against."""

    __tablename__ = "machines"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
        default="No description provided.",
    )
    status: Mapped[MachineStatus] = mapped_column(
        SQLEnum(
            MachineStatus,
            name="machine_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=MachineStatus.ACTIVE,
    )
    # Default call duration, in minutes.
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=90)
    factory_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("factories.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    factory: Mapped["Factory | None"] = relationship(back_populates="machines")

    def __repr__(self) -> str:
        return f"<Machine(id={self.id}, name={self.name}, status={self.status})>"
