from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

from ..models import EscapeRoomSlot, RoomReservation


@dataclass(frozen=True)
class ConditionalWrite:
    """One guarded write, applied only as part of a committer transaction.

    `statement` is opaque to the use cases; only the store that built it and
    the matching committer interpret it. `expected_version` is None for
    inserts, which are guarded by key uniqueness instead.
    """

    target: str
    statement: Any
    expected_version: int | None = None


class SlotRepository(Protocol):
    async def get(self, room_id: str, slot_key: str) -> EscapeRoomSlot | None: ...

    async def create(self, *, room_id: str, slot_key: str) -> EscapeRoomSlot: ...

    def build_conditional_update(
        self,
        slot: EscapeRoomSlot,
        values: Mapping[str, Any],
        expected_version: int,
        *,
        now: datetime,
    ) -> ConditionalWrite: ...

    def build_hold(self, slot: EscapeRoomSlot, *, reservation_id: str, now: datetime) -> ConditionalWrite: ...

    def build_confirm(self, slot: EscapeRoomSlot, *, now: datetime) -> ConditionalWrite: ...

    def build_release(self, slot: EscapeRoomSlot, *, now: datetime) -> ConditionalWrite: ...


class ReservationRepository(Protocol):
    async def get(self, reservation_id: str) -> RoomReservation | None: ...

    async def list_by_user(self, user_id: str) -> list[RoomReservation]: ...

    def build_insert(self, reservation: RoomReservation) -> ConditionalWrite: ...

    def build_conditional_update(
        self,
        reservation: RoomReservation,
        values: Mapping[str, Any],
        expected_version: int,
        *,
        now: datetime,
    ) -> ConditionalWrite: ...

    def build_confirm(self, reservation: RoomReservation, *, now: datetime) -> ConditionalWrite: ...

    def build_cancel(self, reservation: RoomReservation, *, now: datetime) -> ConditionalWrite: ...

    def build_expire(self, reservation: RoomReservation, *, now: datetime) -> ConditionalWrite: ...


class TransactionCommitter(Protocol):
    async def commit(self, writes: Sequence[ConditionalWrite]) -> None: ...


class ExpiryScheduler(Protocol):
    def schedule(self, reservation_id: str, fire_at: datetime) -> None: ...
