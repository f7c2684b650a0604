from dataclasses import dataclass
from datetime import datetime

from ..models import EscapeRoomSlot, ReservationStatus, RoomReservation, SlotStatus
from .errors import InconsistentStateError, InvalidTransitionError

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.HOLD: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED, ReservationStatus.EXPIRED}
    ),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.CANCELLED}),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
}


@dataclass(frozen=True)
class BookingSnapshot:
    """Reservation and slot as read together at the start of an operation."""

    reservation: RoomReservation
    slot: EscapeRoomSlot

    @property
    def slot_held_by_reservation(self) -> bool:
        return self.slot.occupying_reservation_id == self.reservation.id


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"cannot move reservation from {current} to {target}")


def ensure_same_slot(reservation: RoomReservation, slot: EscapeRoomSlot) -> None:
    if (reservation.room_id, reservation.slot_key) != (slot.room_id, slot.slot_key):
        raise InconsistentStateError(
            f"reservation {reservation.id} points at {reservation.room_id}/{reservation.slot_key} "
            f"but slot {slot.room_id}/{slot.slot_key} was loaded"
        )


def is_slot_available(slot: EscapeRoomSlot | None) -> bool:
    return slot is not None and slot.status == SlotStatus.AVAILABLE and slot.occupying_reservation_id is None


def is_valid_for_confirmation(snapshot: BookingSnapshot) -> bool:
    return (
        snapshot.slot_held_by_reservation
        and snapshot.reservation.status == ReservationStatus.HOLD
        and snapshot.slot.status == SlotStatus.HOLD
    )


def is_valid_for_cancellation(snapshot: BookingSnapshot) -> bool:
    return (
        snapshot.reservation.status in (ReservationStatus.HOLD, ReservationStatus.CONFIRMED)
        and snapshot.slot.status in (SlotStatus.HOLD, SlotStatus.BOOKED)
        and snapshot.slot_held_by_reservation
    )


def is_valid_to_expire(snapshot: BookingSnapshot, *, now: datetime) -> bool:
    """Pure check: the hold is still in place and its deadline has passed."""
    expires_at = snapshot.reservation.hold_expires_at
    return (
        snapshot.reservation.status == ReservationStatus.HOLD
        and expires_at is not None
        and expires_at <= now
        and snapshot.slot.status == SlotStatus.HOLD
        and snapshot.slot_held_by_reservation
    )


def hold_deadline_passed(reservation: RoomReservation, *, now: datetime) -> bool:
    return reservation.hold_expires_at is not None and reservation.hold_expires_at <= now
