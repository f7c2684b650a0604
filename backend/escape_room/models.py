from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import Enum, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class SlotStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    HOLD = "HOLD"
    BOOKED = "BOOKED"


class ReservationStatus(StrEnum):
    HOLD = "HOLD"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


def _status_column(enum_cls: type[StrEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
        length=16,
    )


class EscapeRoomSlot(Base):
    __tablename__ = "slots"
    __table_args__ = (Index("idx_slots_reservation", "occupying_reservation_id"),)

    room_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    slot_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[SlotStatus] = mapped_column(
        _status_column(SlotStatus, "slot_status"),
        nullable=False,
        default=SlotStatus.AVAILABLE,
    )
    occupying_reservation_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    def __repr__(self) -> str:
        return (
            f"EscapeRoomSlot(room_id={self.room_id!r}, slot_key={self.slot_key!r}, "
            f"status={self.status!s}, occupying_reservation_id={self.occupying_reservation_id!r}, "
            f"version={self.version})"
        )


class RoomReservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("idx_res_slot", "room_id", "slot_key"),
        Index("idx_res_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    slot_key: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _status_column(ReservationStatus, "reservation_status"),
        nullable=False,
        default=ReservationStatus.HOLD,
    )
    hold_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    def __repr__(self) -> str:
        return (
            f"RoomReservation(id={self.id!r}, room_id={self.room_id!r}, slot_key={self.slot_key!r}, "
            f"status={self.status!s}, hold_expires_at={self.hold_expires_at!s}, version={self.version})"
        )
