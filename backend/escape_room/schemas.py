from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .models import EscapeRoomSlot, ReservationStatus, RoomReservation, SlotStatus
from .utils.time import utc_naive_to_aware


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReservationCreate(_CamelModel):
    # Optional so that a missing field maps to the documented 400 body instead of a 422.
    user_id: Optional[str] = Field(default=None, alias="userId")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    slot_id: Optional[str] = Field(default=None, alias="slotId")


class ReservationRead(_CamelModel):
    reservation_id: str = Field(alias="reservationId")
    room_id: str = Field(alias="roomId")
    slot_id: str = Field(alias="slotId")
    user_id: str = Field(alias="userId")
    reservation_status: ReservationStatus = Field(alias="reservationStatus")
    created_at: datetime = Field(alias="createdAt")
    hold_expires_at: Optional[datetime] = Field(default=None, alias="holdExpiresAt")
    last_updated: datetime = Field(alias="lastUpdated")
    version: int

    @field_serializer("created_at", "hold_expires_at", "last_updated")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_db(cls, *, reservation: RoomReservation) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            room_id=reservation.room_id,
            slot_id=reservation.slot_key,
            user_id=reservation.user_id,
            reservation_status=reservation.status,
            created_at=utc_naive_to_aware(reservation.created_at),
            hold_expires_at=(
                utc_naive_to_aware(reservation.hold_expires_at) if reservation.hold_expires_at is not None else None
            ),
            last_updated=utc_naive_to_aware(reservation.updated_at),
            version=reservation.version,
        )


class MessageResponse(BaseModel):
    message: str


class ExpiryCallback(_CamelModel):
    reservation_id: Optional[str] = Field(default=None, alias="reservationId")


class ExpiryCompleted(_CamelModel):
    reservation_id: str = Field(alias="reservationId")
    status: Literal["COMPLETED"] = "COMPLETED"


class ExpiryInputError(BaseModel):
    status: Literal["ERROR_INPUT"] = "ERROR_INPUT"
    message: str


class SlotCreate(_CamelModel):
    room_id: str = Field(alias="roomId", min_length=1, max_length=64)
    slot_id: str = Field(alias="slotId", min_length=1, max_length=64)


class SlotRead(_CamelModel):
    room_id: str = Field(alias="roomId")
    slot_id: str = Field(alias="slotId")
    slot_status: SlotStatus = Field(alias="slotStatus")
    current_reservation_id: Optional[str] = Field(default=None, alias="currentReservationId")
    created_at: datetime = Field(alias="createdAt")
    last_updated: datetime = Field(alias="lastUpdated")
    version: int

    @field_serializer("created_at", "last_updated")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, slot: EscapeRoomSlot) -> "SlotRead":
        return cls(
            room_id=slot.room_id,
            slot_id=slot.slot_key,
            slot_status=slot.status,
            current_reservation_id=slot.occupying_reservation_id,
            created_at=utc_naive_to_aware(slot.created_at),
            last_updated=utc_naive_to_aware(slot.updated_at),
            version=slot.version,
        )
